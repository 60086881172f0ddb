"""Path-keyed debounce state for the desktop watcher.

The tracker is a plain data structure driven by explicit timestamps; the
watcher's sweeper task owns it and calls it from the event loop only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

DEFAULT_DEBOUNCE_SECONDS = 0.6
DEFAULT_COOLDOWN_SECONDS = 10.0


@dataclass
class PathState:
    last_seen: float
    in_flight: bool = False
    attempts: int = 0


class DebounceTracker:
    """Collapse bursts of file events into one submission per path.

    Args:
        debounce_seconds: Quiet period after the last event before a path is due.
        cooldown_seconds: How long events for a finished path stay suppressed.
    """

    def __init__(
        self,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self.debounce_seconds = debounce_seconds
        self.cooldown_seconds = cooldown_seconds
        self._paths: Dict[str, PathState] = {}
        self._finished: Dict[str, float] = {}

    def touch(self, path: str, now: float) -> bool:
        """Record an event for `path`; return False when the event is suppressed."""
        self._expire(now)
        if path in self._finished:
            return False
        state = self._paths.get(path)
        if state is None:
            self._paths[path] = PathState(last_seen=now)
            return True
        if state.in_flight:
            return False
        state.last_seen = now
        return True

    def due(self, now: float) -> List[str]:
        """Return paths whose debounce elapsed and mark them in flight."""
        ready = []
        for path, state in self._paths.items():
            if not state.in_flight and now - state.last_seen >= self.debounce_seconds:
                state.in_flight = True
                ready.append(path)
        return ready

    def reschedule(self, path: str, now: float) -> None:
        """Put an in-flight path back into debouncing (file still growing)."""
        state = self._paths.get(path)
        if state is not None:
            state.in_flight = False
            state.last_seen = now

    def record_failure(self, path: str) -> int:
        """Count a transient failure and return the number so far."""
        state = self._paths.get(path)
        if state is None:
            return 0
        state.attempts += 1
        return state.attempts

    def release(self, path: str, now: Optional[float] = None) -> None:
        """Forget `path`; with `now` it is also suppressed for the cooldown."""
        self._paths.pop(path, None)
        if now is not None:
            self._finished[path] = now

    def is_in_flight(self, path: str) -> bool:
        state = self._paths.get(path)
        return bool(state and state.in_flight)

    def pending(self) -> int:
        return len(self._paths)

    def clear(self) -> None:
        self._paths.clear()
        self._finished.clear()

    def _expire(self, now: float) -> None:
        expired = [p for p, ts in self._finished.items() if now - ts >= self.cooldown_seconds]
        for path in expired:
            del self._finished[path]
