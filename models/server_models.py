"""Server configuration, status and session models."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
	import uvicorn

	from services.pipeline.processing_pipeline import ProcessingPipeline
	from services.watcher.desktop_ingest import DesktopIngest

DEFAULT_PORT = 5001
DEFAULT_MAX_IMAGE_BYTES = 15 * 1024 * 1024
DEFAULT_MIN_IMAGE_BYTES = 1024
DEFAULT_HISTORY_LIMIT = 50


def default_watch_directory() -> Path:
	return Path.home() / "Desktop"


@dataclass(frozen=True)
class ServerConfig:
	"""Operator configuration, handed to a session as an immutable snapshot."""

	openai_api_key: Optional[str] = None
	telegram_bot_token: Optional[str] = None
	telegram_chat_id: Optional[str] = None
	enable_desktop_detection: bool = False
	server_port: int = DEFAULT_PORT
	host: str = "0.0.0.0"
	watch_directory: Path = field(default_factory=default_watch_directory)
	max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
	min_image_bytes: int = DEFAULT_MIN_IMAGE_BYTES
	history_limit: int = DEFAULT_HISTORY_LIMIT
	ai_model: Optional[str] = None
	ai_timeout_seconds: float = 30.0
	debounce_seconds: float = 0.6

	@property
	def telegram_configured(self) -> bool:
		return bool(self.telegram_bot_token and self.telegram_chat_id)

	def to_dict(self) -> Dict[str, Any]:
		"""Shell-facing view. Credentials are reported as present/absent only."""
		return {
			"openai_api_key_set": bool(self.openai_api_key),
			"telegram_bot_token_set": bool(self.telegram_bot_token),
			"telegram_chat_id": self.telegram_chat_id,
			"enable_desktop_detection": self.enable_desktop_detection,
			"server_port": self.server_port,
			"watch_directory": str(self.watch_directory),
		}


class ServerState(str, Enum):
	STOPPED = "stopped"
	STARTING = "starting"
	RUNNING = "running"
	STOPPING = "stopping"


@dataclass
class ServerInfo:
	"""Status answer for the shell and the /status route."""

	status: str
	local_ip: str
	port: int
	endpoint_url: str
	desktop_detection: bool
	telegram_configured: bool

	def to_dict(self) -> Dict[str, Any]:
		return {
			"status": self.status,
			"local_ip": self.local_ip,
			"port": self.port,
			"endpoint_url": self.endpoint_url,
			"desktop_detection": self.desktop_detection,
			"telegram_configured": self.telegram_configured,
		}


@dataclass
class ServerSession:
	"""One run of the HTTP endpoint plus the optional desktop watcher."""

	config: ServerConfig
	host: str
	port: int
	local_ip: str
	pipeline: "ProcessingPipeline"
	desktop_detection: bool = False
	watcher: Optional["DesktopIngest"] = None
	server: Optional["uvicorn.Server"] = None
	serve_task: Optional[asyncio.Task] = None
	started_at: float = field(default_factory=time.time)

	@property
	def endpoint_url(self) -> str:
		return f"http://{self.local_ip}:{self.port}/screenshot"

	def info(self) -> ServerInfo:
		return ServerInfo(
			status=ServerState.RUNNING.value,
			local_ip=self.local_ip,
			port=self.port,
			endpoint_url=self.endpoint_url,
			desktop_detection=self.desktop_detection,
			telegram_configured=self.config.telegram_configured,
		)
