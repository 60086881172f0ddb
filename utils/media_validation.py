"""Validation helpers for submitted screenshot payloads."""

import base64
import binascii
import math
import re
from typing import Optional

from utils.errors import ValidationError

ALLOWED_IMAGE_TYPES = {
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
}

_DATA_URL_RE = re.compile(r"^data:([^;,]*)(;base64)?,(.*)$", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


def strip_data_url(data: str) -> str:
    """Return the base64 body of a `data:image/...;base64,` URL, or the input unchanged.

    Raises ValidationError when a data URL declares a non-image mime type
    or is not base64 encoded.
    """
    text = (data or "").strip()
    match = _DATA_URL_RE.match(text)
    if not match:
        return text
    declared_type = (match.group(1) or "").lower()
    if declared_type and not declared_type.startswith("image/"):
        raise ValidationError(f"Unsupported content type: {declared_type}", status_code=415)
    if not match.group(2):
        raise ValidationError("Data URL must be base64 encoded.")
    return match.group(3)


def max_encoded_length(max_bytes: int) -> int:
    """Longest base64 text (padding included) that can decode to `max_bytes` bytes."""
    return 4 * math.ceil(max_bytes / 3)


def decode_base64_image(data: str | bytes, max_bytes: Optional[int] = None) -> bytes:
    """Decode a base64 string (optionally wrapped in a data URL) into raw bytes.

    With `max_bytes`, payloads whose encoded length already exceeds the
    limit are rejected with 413 before decoding.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("ascii")
        except UnicodeDecodeError as exc:
            raise ValidationError("Image payload must be base64 text.") from exc
    body = _WHITESPACE_RE.sub("", strip_data_url(data))
    if not body:
        raise ValidationError("Image payload is required.")
    if max_bytes is not None and len(body) > max_encoded_length(max_bytes):
        raise ValidationError(
            f"Image too large (max {max_bytes} bytes).", status_code=413
        )
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid base64 image data.") from exc


def sniff_mime_type(raw: bytes) -> Optional[str]:
    """Detect the image type from its leading magic bytes."""
    if raw.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if raw.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if raw[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if raw[:4] == b"RIFF" and raw[8:12] == b"WEBP":
        return "image/webp"
    if raw.startswith(b"BM"):
        return "image/bmp"
    if raw[:4] in (b"II*\x00", b"MM\x00*"):
        return "image/tiff"
    return None


def ensure_image_size(raw: bytes, *, min_bytes: int, max_bytes: int) -> int:
    """Check the payload against the configured bounds and return its size.

    A payload of exactly `max_bytes` is accepted.
    """
    size = len(raw)
    if size == 0:
        raise ValidationError("Image payload is empty.")
    if size > max_bytes:
        raise ValidationError(
            f"Image too large ({size} bytes, max {max_bytes} bytes).", status_code=413
        )
    if size < min_bytes:
        raise ValidationError(f"Image too small ({size} bytes, min {min_bytes} bytes).")
    return size


def ensure_image_type(raw: bytes) -> str:
    """Return the mime type of `raw` or raise a 415 ValidationError."""
    mime_type = sniff_mime_type(raw)
    if mime_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Unsupported or non-image content type.", status_code=415)
    return mime_type
