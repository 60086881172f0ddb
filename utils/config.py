"""Load the relay configuration from the environment (and an optional .env file)."""

import logging
import os
from pathlib import Path
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

from models.server_models import (
	DEFAULT_HISTORY_LIMIT,
	DEFAULT_MAX_IMAGE_BYTES,
	DEFAULT_PORT,
	ServerConfig,
	default_watch_directory,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_str(name: str) -> Optional[str]:
	value = os.getenv(name)
	if value is None:
		return None
	value = value.strip()
	return value or None


def _env_parsed(name: str, parse: Callable[[str], T], default: T, minimum: Optional[T] = None) -> T:
	raw = _env_str(name)
	if raw is None:
		return default
	try:
		value = parse(raw)
	except ValueError:
		LOGGER.warning("Ignoring invalid %s=%r; using %r", name, raw, default)
		return default
	if minimum is not None and value < minimum:
		LOGGER.warning("Ignoring out-of-range %s=%r; using %r", name, raw, default)
		return default
	return value


def _env_bool(name: str, default: bool = False) -> bool:
	raw = _env_str(name)
	if raw is None:
		return default
	lowered = raw.lower()
	if lowered in _TRUE_VALUES:
		return True
	if lowered not in _FALSE_VALUES:
		LOGGER.warning("Ignoring invalid %s=%r; using %r", name, raw, default)
		return default
	return False


def load_config(env_file: Optional[str] = None) -> ServerConfig:
	"""Build a ServerConfig from environment variables.

	Values already in the environment win over the .env file. Invalid
	numbers fall back to their defaults with a warning.
	"""
	load_dotenv(env_file)

	watch_dir = _env_str("WATCH_DIRECTORY")
	port = _env_parsed("SERVER_PORT", int, DEFAULT_PORT, minimum=1)
	if port > 65535:
		LOGGER.warning("Ignoring out-of-range SERVER_PORT=%r; using %r", port, DEFAULT_PORT)
		port = DEFAULT_PORT

	return ServerConfig(
		openai_api_key=_env_str("OPENAI_API_KEY"),
		telegram_bot_token=_env_str("TELEGRAM_BOT_TOKEN"),
		telegram_chat_id=_env_str("TELEGRAM_CHAT_ID"),
		enable_desktop_detection=_env_bool("ENABLE_DESKTOP_DETECTION"),
		server_port=port,
		host=_env_str("SERVER_HOST") or "0.0.0.0",
		watch_directory=Path(watch_dir).expanduser() if watch_dir else default_watch_directory(),
		max_image_bytes=_env_parsed("MAX_IMAGE_BYTES", int, DEFAULT_MAX_IMAGE_BYTES, minimum=1),
		history_limit=_env_parsed("HISTORY_LIMIT", int, DEFAULT_HISTORY_LIMIT, minimum=1),
		ai_model=_env_str("OPENAI_MODEL"),
		ai_timeout_seconds=_env_parsed("AI_TIMEOUT_SECONDS", float, 30.0, minimum=1.0),
	)
