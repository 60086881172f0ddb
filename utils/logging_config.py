"""Console logging setup for the relay, plus uvicorn access-log filtering."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class _AccessPathFilter(logging.Filter):
    """Drop uvicorn access lines that mention one of the given paths."""

    def __init__(self, suppressed_paths: set[str]) -> None:
        super().__init__()
        self._suppressed_paths = suppressed_paths

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        return not any(path in msg for path in self._suppressed_paths)


def suppress_access_log_paths(*paths: str) -> None:
    """Keep frequent polling endpoints such as /health out of the access log."""
    if not paths:
        return
    logging.getLogger("uvicorn.access").addFilter(_AccessPathFilter(set(paths)))


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger and quiet chatty third-party loggers."""
    root_level = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=root_level, format=LOG_FORMAT, force=True)
    for name, lib_level in [
        ("openai", logging.INFO),
        ("httpcore", logging.WARNING),
        ("httpx", logging.WARNING),
        ("watchdog", logging.WARNING),
        ("PIL", logging.INFO),
    ]:
        logging.getLogger(name).setLevel(lib_level)
    suppress_access_log_paths("/health")
