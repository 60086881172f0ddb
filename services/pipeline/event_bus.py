"""
Fire-and-forget event channel from the core to the shell.

Subscribers get their own bounded asyncio queue. Publishing never blocks:
when a subscriber's queue is full the event is dropped for that subscriber.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

ITEM_PROCESSED = "item-processed"
SETUP_REQUESTED = "setup-requested"
SERVER_STATUS_CHANGED = "server-status-changed"

DEFAULT_QUEUE_SIZE = 100

logger = logging.getLogger(__name__)


@dataclass
class AppEvent:
	"""One event pushed to the shell."""

	type: str
	data: Dict[str, Any] = field(default_factory=dict)
	event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
	ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class EventBus:
	"""Publish/subscribe hub; safe to publish from the loop or from other threads."""

	def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
		self._queue_size = queue_size
		self._subscribers: List[asyncio.Queue] = []
		self._loop: Optional[asyncio.AbstractEventLoop] = None

	def subscribe(self) -> "asyncio.Queue[AppEvent]":
		"""Register a subscriber and return its queue."""
		queue: "asyncio.Queue[AppEvent]" = asyncio.Queue(maxsize=self._queue_size)
		self._subscribers.append(queue)
		try:
			self._loop = asyncio.get_running_loop()
		except RuntimeError:
			pass
		return queue

	def unsubscribe(self, queue: "asyncio.Queue[AppEvent]") -> None:
		if queue in self._subscribers:
			self._subscribers.remove(queue)

	def publish(self, type: str, data: Optional[Dict[str, Any]] = None) -> AppEvent:
		"""Queue an event for every subscriber without waiting."""
		event = AppEvent(type=type, data=data or {})
		try:
			running = asyncio.get_running_loop()
		except RuntimeError:
			running = None
		if running is None and self._loop is not None and not self._loop.is_closed():
			self._loop.call_soon_threadsafe(self._deliver, event)
		else:
			self._deliver(event)
		return event

	def _deliver(self, event: AppEvent) -> None:
		for queue in list(self._subscribers):
			try:
				queue.put_nowait(event)
			except asyncio.QueueFull:
				logger.debug("dropping %s event for slow subscriber", event.type)
