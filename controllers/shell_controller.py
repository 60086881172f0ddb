"""Command surface used by the application shell (GUI or CLI)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from controllers.screenshot_controller import build_processing_response
from models.processed_item import ItemSource, ScreenshotMetadata
from models.server_models import ServerConfig, ServerInfo
from services.pipeline.event_bus import SETUP_REQUESTED, AppEvent, EventBus
from services.server.server_manager import ServerManager
from utils.config import load_config
from utils.errors import DecodeError, NotRunningError, ValidationError

LOGGER = logging.getLogger(__name__)


class ShellController:
    """Thin wrapper around ServerManager exposing the shell's commands."""

    def __init__(self, manager: Optional[ServerManager] = None, *, events: Optional[EventBus] = None) -> None:
        if manager is None:
            manager = ServerManager(events=events)
        self.manager = manager
        self.events = manager.events

    def load_config(self, env_file: Optional[str] = None) -> ServerConfig:
        return load_config(env_file)

    async def start(self, config: ServerConfig) -> ServerInfo:
        return await self.manager.start(config)

    async def stop(self) -> None:
        await self.manager.stop()

    def get_status(self) -> Optional[ServerInfo]:
        return self.manager.get_status()

    async def toggle_desktop_detection(self, enable: bool) -> ServerInfo:
        return await self.manager.toggle_desktop_detection(enable)

    async def process_image_direct(self, image_b64: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Submit an image dropped into the shell.

        The source is MANUAL_UPLOAD unless the metadata names another one.
        Rejected payloads come back as `{success: False, error}` like the
        HTTP endpoint's error bodies.

        Raises:
            NotRunningError: The server is stopped.
        """
        session = self.manager.session
        if session is None or self.manager.get_status() is None:
            raise NotRunningError("Server is not running")
        meta = ScreenshotMetadata.from_dict(metadata)
        source = ItemSource.from_metadata(meta.source, ItemSource.MANUAL_UPLOAD)
        try:
            item = await session.pipeline.submit_base64(image_b64, source, meta)
        except (ValidationError, DecodeError) as exc:
            response = build_processing_response(exc.item) if exc.item is not None else {}
            response.update({"success": False, "error": str(exc)})
            return response
        return build_processing_response(item)

    async def list_recent_items(self) -> List[Dict[str, Any]]:
        """Most-recent-first item views, without image bytes."""
        items = await self.manager.recent_items()
        return [item.to_dict() for item in items]

    def subscribe(self) -> "asyncio.Queue[AppEvent]":
        return self.events.subscribe()

    def request_setup_if_needed(self, config: ServerConfig) -> bool:
        """Ask the shell for the AI credential on first run; return True when asked."""
        if config.openai_api_key:
            return False
        LOGGER.info("OpenAI API key missing; requesting setup")
        self.events.publish(SETUP_REQUESTED, {"config": config.to_dict()})
        return True
