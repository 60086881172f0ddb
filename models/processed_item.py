from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from utils.errors import ErrorKind, InvalidTransitionError


class ItemSource(str, Enum):
    """Where an image entered the pipeline."""

    IOS_PUSH = "ios_push"
    DESKTOP_AUTO = "desktop_auto"
    MANUAL_UPLOAD = "manual_upload"

    @classmethod
    def from_metadata(cls, raw: Optional[str], default: "ItemSource") -> "ItemSource":
        """Map the free-form `metadata.source` string sent by clients onto a source tag."""
        value = (raw or "").strip().lower()
        if not value:
            return default
        if value.startswith("desktop"):
            return cls.DESKTOP_AUTO
        if value.startswith("manual") or value in ("upload", "drop", "drag_and_drop"):
            return cls.MANUAL_UPLOAD
        return cls.IOS_PUSH


class ItemStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ScreenshotMetadata:
    """Optional client-supplied context for a screenshot."""

    source: Optional[str] = None
    app: Optional[str] = None
    filename: Optional[str] = None
    location: Optional[str] = None
    auto_detected: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScreenshotMetadata":
        data = data or {}
        auto = data.get("auto_detected")
        return cls(
            source=_optional_str(data.get("source")),
            app=_optional_str(data.get("app")),
            filename=_optional_str(data.get("filename")),
            location=_optional_str(data.get("location")),
            auto_detected=bool(auto) if auto is not None else None,
        )


@dataclass
class ContentAnalysis:
    """Structured description of what a screenshot contains."""

    content_type: str = "unknown"
    webpage_url: Optional[str] = None
    research_topics: List[str] = field(default_factory=list)
    user_intent: str = ""
    follow_up: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_type": self.content_type,
            "webpage_url": self.webpage_url,
            "research_topics": list(self.research_topics),
            "user_intent": self.user_intent,
            "follow_up": self.follow_up,
        }


_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/gif": "gif", "image/webp": "webp"}


def new_item_id() -> str:
    return uuid.uuid4().hex


def default_item_name(item_id: str, mime_type: str) -> str:
    """Name used when the client did not provide a filename."""
    return f"screenshot-{item_id[:8]}.{_EXTENSIONS.get(mime_type, 'png')}"


@dataclass
class ProcessedItem:
    """One screenshot moving through (or finished with) the processing pipeline.

    Attributes:
        id: Opaque unique identifier assigned at ingestion.
        source: Ingress path tag, immutable.
        name: Filename supplied by the client or a generated one.
        byte_size: Size of the raw image bytes.
        mime_type: Detected image mime type.
        timestamp: UTC ingestion instant.
        status: PROCESSING until finalized exactly once.
        analysis_summary: Set only on COMPLETED.
        error_detail: Human readable failure, set only on ERROR.
        error_kind: Failure category, set only on ERROR.
        image_bytes: Owned copy of the raw bytes, kept for the process lifetime.
    """

    id: str
    source: ItemSource
    name: str
    byte_size: int
    mime_type: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: ItemStatus = ItemStatus.PROCESSING
    analysis_summary: Optional[str] = None
    error_detail: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    image_bytes: bytes = field(default=b"", repr=False)
    width: Optional[int] = None
    height: Optional[int] = None
    app: Optional[str] = None
    analysis_id: Optional[str] = None
    content_analysis: Optional[ContentAnalysis] = None
    notified: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status is not ItemStatus.PROCESSING

    def complete(self, summary: str, *, analysis_id: Optional[str] = None,
                 content_analysis: Optional[ContentAnalysis] = None) -> None:
        """Move PROCESSING -> COMPLETED."""
        self._ensure_processing()
        self.status = ItemStatus.COMPLETED
        self.analysis_summary = summary
        self.analysis_id = analysis_id
        self.content_analysis = content_analysis

    def fail(self, kind: ErrorKind, detail: str) -> None:
        """Move PROCESSING -> ERROR."""
        self._ensure_processing()
        self.status = ItemStatus.ERROR
        self.error_kind = kind
        self.error_detail = detail

    def _ensure_processing(self) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(f"Item {self.id} is already {self.status.value}")

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view for the shell; image bytes are left out."""
        return {
            "id": self.id,
            "name": self.name,
            "size": self.byte_size,
            "type": self.mime_type,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "analysis": self.analysis_summary,
            "error": self.error_detail,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "source": self.source.value,
            "width": self.width,
            "height": self.height,
            "app": self.app,
            "analysis_id": self.analysis_id,
            "content_analysis": self.content_analysis.to_dict() if self.content_analysis else None,
            "notified": self.notified,
        }


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
