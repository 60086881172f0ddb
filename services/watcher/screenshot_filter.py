"""Filename rules deciding which files in the watched folder are screenshots."""

from pathlib import Path
from typing import Iterable, Union

DEFAULT_PATTERNS = ("screenshot", "screen shot", "capture", "cleanshot")
DEFAULT_EXTENSIONS = ("png", "jpg", "jpeg")


def is_screenshot_file(
	path: Union[str, Path],
	patterns: Iterable[str] = DEFAULT_PATTERNS,
	extensions: Iterable[str] = DEFAULT_EXTENSIONS,
) -> bool:
	"""Return True when the filename looks like a screenshot we should process.

	Hidden files are skipped: macOS writes the capture to a hidden temp file
	and renames it once complete.
	"""
	name = Path(path).name
	if not name or name.startswith("."):
		return False
	lowered = name.lower()
	suffix = Path(lowered).suffix.lstrip(".")
	if suffix not in {ext.lower().lstrip(".") for ext in extensions}:
		return False
	return any(pattern.lower() in lowered for pattern in patterns)
