"""Image codec and metadata extractor.

Provides a small OOP wrapper around Pillow that validates raw image bytes,
extracts size/dimensions/mime type, and re-encodes formats the vision
provider does not accept (BMP, TIFF) into PNG.

Public class: `ImageCodec`

Example:
    codec = ImageCodec(max_bytes=15 * 1024 * 1024)
    decoded = codec.decode(raw_bytes)
    b64, mime = codec.encode_for_provider(decoded)
"""
from __future__ import annotations

import base64
import io
import struct
from dataclasses import dataclass, field
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from utils.errors import DecodeError
from utils.media_validation import ensure_image_size, ensure_image_type

PROVIDER_IMAGE_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}


@dataclass(frozen=True)
class DecodedImage:
    """Validated image bytes plus the metadata extracted from them."""

    data: bytes = field(repr=False)
    mime_type: str
    width: int
    height: int

    @property
    def byte_size(self) -> int:
        return len(self.data)


class ImageCodec:
    """Decode and validate image payloads.

    Args:
        max_bytes: Largest accepted payload; a payload of exactly this size is accepted.
        min_bytes: Smallest accepted payload.
        background: Background color used when flattening alpha during re-encoding.
    """

    def __init__(
        self,
        max_bytes: int = 15 * 1024 * 1024,
        min_bytes: int = 0,
        background: Tuple[int, int, int] | None = None,
    ):
        self.max_bytes = max_bytes
        self.min_bytes = min_bytes
        self.background = background or (255, 255, 255)

    def decode(self, raw: bytes) -> DecodedImage:
        """Validate raw bytes and extract image metadata.

        Raises:
            ValidationError: If the payload is empty, out of bounds, or not an image type.
            DecodeError: If the payload claims an image type but Pillow cannot read it.
        """
        ensure_image_size(raw, min_bytes=self.min_bytes, max_bytes=self.max_bytes)
        mime_type = ensure_image_type(raw)

        try:
            with Image.open(io.BytesIO(raw)) as img:
                width, height = img.size
                # verify() checks PNG chunk CRCs; other formats are a no-op here
                img.verify()
            # verify() only checks PNG; decoding the pixels catches the other formats
            with Image.open(io.BytesIO(raw)) as img:
                img.load()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError, struct.error) as exc:
            raise DecodeError(f"Corrupt or unreadable image: {exc}") from exc

        if width <= 0 or height <= 0:
            raise DecodeError("Image has no pixels.")

        return DecodedImage(data=bytes(raw), mime_type=mime_type, width=width, height=height)

    def encode_for_provider(self, image: DecodedImage) -> Tuple[str, str]:
        """Return `(base64_text, mime_type)` in a format the vision provider accepts."""
        if image.mime_type in PROVIDER_IMAGE_TYPES:
            return base64.b64encode(image.data).decode("utf-8"), image.mime_type

        try:
            src = Image.open(io.BytesIO(image.data))
            src.load()
        except (UnidentifiedImageError, OSError, ValueError, struct.error) as exc:
            raise DecodeError("Decoded bytes are not a supported image format") from exc

        src = src.convert("RGBA")
        flattened = Image.new("RGB", src.size, self.background)
        flattened.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        flattened.save(out_io, format="PNG", optimize=True)
        return base64.b64encode(out_io.getvalue()).decode("utf-8"), "image/png"
