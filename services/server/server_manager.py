"""Lifecycle of the relay: HTTP endpoint plus optional desktop watcher.

The manager owns the process-lifetime history and at most one live
ServerSession. `start` is atomic: the socket is bound first, and any failure
after that tears down whatever was started and returns to STOPPED.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Any, Callable, Dict, List, Optional

import uvicorn

from models.processed_item import ProcessedItem
from models.server_models import ServerConfig, ServerInfo, ServerSession, ServerState
from services.image_codec import ImageCodec
from services.notification.telegram_notifier import NullNotifier, TelegramNotifier
from services.openai.analysis_client import AnalysisClient
from services.pipeline.event_bus import SERVER_STATUS_CHANGED, EventBus
from services.pipeline.history_store import HistoryStore
from services.pipeline.processing_pipeline import ProcessingPipeline
from services.server.network import bind_listening_socket, get_local_ip
from services.watcher.desktop_ingest import DesktopIngest
from services.watcher.desktop_watcher import DesktopWatcher
from utils.errors import (
    AlreadyRunningError,
    ConfigValidationError,
    LifecycleError,
    NotRunningError,
    PortInUseError,
)

LOGGER = logging.getLogger(__name__)

STARTUP_TIMEOUT_SECONDS = 10.0
# Extra time on top of the AI timeout for in-flight requests to finish on stop.
SHUTDOWN_MARGIN_SECONDS = 5.0


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host application."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def build_analyzer(config: ServerConfig) -> AnalysisClient:
    return AnalysisClient.from_api_key(
        config.openai_api_key,
        model=config.ai_model,
        timeout_seconds=config.ai_timeout_seconds,
    )


def build_notifier(config: ServerConfig):
    if config.telegram_configured:
        return TelegramNotifier(
            config.telegram_bot_token,
            config.telegram_chat_id,
            timeout_seconds=config.ai_timeout_seconds,
        )
    LOGGER.info("Telegram credentials not configured; notifications disabled")
    return NullNotifier()


def _default_app_factory(session: ServerSession):
    from main import create_app

    return create_app(session)


class ServerManager:
    """Start, stop and inspect the relay session.

    Args:
        events: Event bus receiving `server-status-changed` (and the pipeline's events).
        app_factory: Builds the ASGI app for a session.
        analyzer_factory: Builds the AI analysis client from the config.
        notifier_factory: Builds the notifier from the config.
    """

    def __init__(
        self,
        *,
        events: Optional[EventBus] = None,
        app_factory: Callable[[ServerSession], Any] = _default_app_factory,
        analyzer_factory: Callable[[ServerConfig], Any] = build_analyzer,
        notifier_factory: Callable[[ServerConfig], Any] = build_notifier,
    ) -> None:
        self.events = events or EventBus()
        self.app_factory = app_factory
        self.analyzer_factory = analyzer_factory
        self.notifier_factory = notifier_factory
        self.state = ServerState.STOPPED
        self.session: Optional[ServerSession] = None
        self.history: Optional[HistoryStore] = None
        self._lock = asyncio.Lock()

    def get_status(self) -> Optional[ServerInfo]:
        if self.state is ServerState.RUNNING and self.session is not None:
            return self.session.info()
        return None

    async def recent_items(self) -> List[ProcessedItem]:
        if self.history is None:
            return []
        return await self.history.snapshot()

    async def start(self, config: ServerConfig) -> ServerInfo:
        """Start the endpoint and, if enabled, the desktop watcher.

        Raises:
            ConfigValidationError: The AI key is missing or the watch folder is invalid.
            AlreadyRunningError: A session is live or changing state.
            PortInUseError: The port cannot be bound.
        """
        if self.state is not ServerState.STOPPED:
            raise AlreadyRunningError(f"Server is {self.state.value}")
        if not config.openai_api_key:
            raise ConfigValidationError("OpenAI API key is not configured")

        async with self._lock:
            if self.state is not ServerState.STOPPED:
                raise AlreadyRunningError(f"Server is {self.state.value}")
            self._set_state(ServerState.STARTING)
            try:
                self.session = await self._start_session(config)
            except BaseException:
                self.session = None
                self._set_state(ServerState.STOPPED)
                raise
            self._set_state(ServerState.RUNNING)

        info = self.session.info()
        LOGGER.info("Relay listening on %s", info.endpoint_url)
        return info

    async def stop(self) -> None:
        """Stop the running session.

        Raises:
            NotRunningError: No session is running; state is unchanged.
        """
        if self.state is not ServerState.RUNNING:
            raise NotRunningError("Server is not running")
        async with self._lock:
            if self.state is not ServerState.RUNNING or self.session is None:
                raise NotRunningError("Server is not running")
            session = self.session
            self._set_state(ServerState.STOPPING)
            try:
                await self._teardown(session)
            finally:
                self.session = None
                self._set_state(ServerState.STOPPED)
        LOGGER.info("Relay stopped")

    async def toggle_desktop_detection(self, enable: bool) -> ServerInfo:
        """Start or stop the desktop watcher of the running session."""
        if self.state is not ServerState.RUNNING or self.session is None:
            raise NotRunningError("Server is not running")
        async with self._lock:
            session = self.session
            if session is None:
                raise NotRunningError("Server is not running")
            if enable and session.watcher is None:
                session.watcher = await self._start_watcher(session.config, session.pipeline)
            elif not enable and session.watcher is not None:
                watcher = session.watcher
                session.watcher = None
                await watcher.stop()
            session.desktop_detection = enable
            self._publish_status()
            return session.info()

    async def _start_session(self, config: ServerConfig) -> ServerSession:
        try:
            sock = bind_listening_socket(config.host, config.server_port)
        except OSError as exc:
            raise PortInUseError(f"Port {config.server_port} is not available: {exc}") from exc

        analyzer = None
        notifier = None
        session: Optional[ServerSession] = None
        try:
            if self.history is None:
                self.history = HistoryStore(config.history_limit)
            elif self.history.limit != config.history_limit:
                await self.history.set_limit(config.history_limit)
            analyzer = self.analyzer_factory(config)
            notifier = self.notifier_factory(config)
            codec = ImageCodec(max_bytes=config.max_image_bytes, min_bytes=config.min_image_bytes)
            pipeline = ProcessingPipeline(self.history, codec, analyzer, notifier, self.events)
            local_ip = await asyncio.to_thread(get_local_ip)
            session = ServerSession(
                config=config,
                host=config.host,
                port=sock.getsockname()[1],
                local_ip=local_ip,
                pipeline=pipeline,
                desktop_detection=config.enable_desktop_detection,
            )
            if config.enable_desktop_detection:
                session.watcher = await self._start_watcher(config, pipeline)
            await self._serve(session, sock)
            return session
        except BaseException:
            if session is not None:
                await self._teardown(session)
            else:
                await _close_quietly(analyzer, notifier)
            sock.close()
            raise

    async def _start_watcher(self, config: ServerConfig, pipeline: ProcessingPipeline) -> DesktopIngest:
        watcher = DesktopWatcher(
            str(config.watch_directory),
            max_bytes=config.max_image_bytes,
            debounce_seconds=config.debounce_seconds,
        )
        ingest = DesktopIngest(watcher, pipeline)
        try:
            await ingest.start()
        except OSError as exc:
            raise ConfigValidationError(f"Cannot watch {config.watch_directory}: {exc}") from exc
        return ingest

    async def _serve(self, session: ServerSession, sock: socket.socket) -> None:
        app = self.app_factory(session)
        uv_config = uvicorn.Config(
            app,
            log_config=None,
            timeout_graceful_shutdown=int(session.config.ai_timeout_seconds + SHUTDOWN_MARGIN_SECONDS),
        )
        server = _EmbeddedServer(uv_config)
        session.server = server
        session.serve_task = asyncio.create_task(server.serve(sockets=[sock]))

        deadline = asyncio.get_running_loop().time() + STARTUP_TIMEOUT_SECONDS
        while not server.started:
            if session.serve_task.done():
                exc = session.serve_task.exception()
                raise LifecycleError(f"HTTP server failed to start: {exc}")
            if asyncio.get_running_loop().time() > deadline:
                raise LifecycleError("HTTP server did not start in time")
            await asyncio.sleep(0.05)

    async def _teardown(self, session: ServerSession) -> None:
        if session.watcher is not None:
            watcher = session.watcher
            session.watcher = None
            await watcher.stop()

        if session.server is not None and session.serve_task is not None:
            session.server.should_exit = True
            grace = session.config.ai_timeout_seconds + 2 * SHUTDOWN_MARGIN_SECONDS
            try:
                await asyncio.wait_for(asyncio.shield(session.serve_task), timeout=grace)
            except asyncio.TimeoutError:
                LOGGER.warning("HTTP server did not stop within %.0fs; forcing exit", grace)
                session.server.force_exit = True
                await asyncio.gather(session.serve_task, return_exceptions=True)
            except Exception as exc:
                LOGGER.warning("HTTP server exited with an error: %s", exc)

        await _close_quietly(session.pipeline.analyzer, session.pipeline.notifier)

    def _set_state(self, state: ServerState) -> None:
        self.state = state
        self._publish_status()

    def _publish_status(self) -> None:
        data: Dict[str, Any] = {"status": self.state.value}
        info = self.get_status()
        if info is not None:
            data.update(info.to_dict())
        self.events.publish(SERVER_STATUS_CHANGED, data)


async def _close_quietly(*clients: Any) -> None:
    for client in clients:
        closer = getattr(client, "close", None)
        if closer is None:
            continue
        try:
            result = closer()
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            LOGGER.warning("Error closing %s: %s", type(client).__name__, exc)
