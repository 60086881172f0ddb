import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from controllers.screenshot_controller import error_response
from controllers.shell_controller import ShellController
from models.server_models import ServerConfig, ServerSession
from routes.screenshot_route import router as screenshot_router
from routes.status_route import router as status_router
from utils.errors import LifecycleError
from utils.logging_config import setup_logging

LOGGER = logging.getLogger(__name__)


def create_app(session: ServerSession) -> FastAPI:
    """
    Create the FastAPI application for one server session.

    The session (and its pipeline) is attached to `app.state` so routes reach
    it through the request instead of module globals.
    """
    app = FastAPI(title="Screenshot Relay", docs_url=None, redoc_url=None)
    app.state.session = session
    app.state.pipeline = session.pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        """
        Malformed JSON or a body without an `image` string is a client error.
        """
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
        return error_response(400, f"Invalid request body: {detail}")

    # Register application routers
    app.include_router(screenshot_router)
    app.include_router(status_router)

    return app


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay screenshots to an AI summarizer and Telegram.")
    parser.add_argument("--port", type=int, default=None, help="Listen port (default: SERVER_PORT or 5001)")
    parser.add_argument("--watch-dir", type=Path, default=None, help="Folder watched for desktop screenshots")
    parser.add_argument(
        "--desktop-detection",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable or disable desktop screenshot detection",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--env-file", default=None, help="Optional .env file to load")
    return parser.parse_args(argv)


def apply_overrides(config: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    changes = {}
    if args.port is not None:
        changes["server_port"] = args.port
    if args.watch_dir is not None:
        changes["watch_directory"] = args.watch_dir.expanduser()
    if args.desktop_detection is not None:
        changes["enable_desktop_detection"] = args.desktop_detection
    return dataclasses.replace(config, **changes) if changes else config


async def serve_until_interrupted(controller: ShellController, config: ServerConfig) -> None:
    info = await controller.start(config)
    print(f"Send screenshots to {info.endpoint_url}")

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C raises KeyboardInterrupt instead.
            pass
    try:
        await stop_requested.wait()
    finally:
        await controller.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    controller = ShellController()
    config = apply_overrides(controller.load_config(args.env_file), args)

    if controller.request_setup_if_needed(config):
        print("OPENAI_API_KEY is not set. Add it to your environment or .env file.", file=sys.stderr)
        return 1

    try:
        asyncio.run(serve_until_interrupted(controller, config))
    except LifecycleError as exc:
        LOGGER.error("Could not start relay (%s): %s", exc.code, exc)
        return 2
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
