"""Single ingestion pipeline shared by the HTTP endpoint, the watcher and the shell.

Every submission is decoded, recorded in the history, analyzed, delivered to
the notification channel and finalized exactly once. The history lock is the
only serialization point, so independent submissions run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from models.processed_item import (
    ItemSource,
    ProcessedItem,
    ScreenshotMetadata,
    default_item_name,
    new_item_id,
)
from services.image_codec import DecodedImage, ImageCodec
from services.openai.analysis_client import AnalysisContext, AnalysisResult
from services.pipeline.event_bus import ITEM_PROCESSED, EventBus
from services.pipeline.history_store import HistoryStore
from utils.errors import (
    AnalysisError,
    DecodeError,
    ErrorKind,
    NotificationDeliveryError,
    ValidationError,
)
from utils.media_validation import decode_base64_image, sniff_mime_type

LOGGER = logging.getLogger(__name__)


class ProcessingPipeline:
    """Run screenshots through decode, analysis and notification.

    Args:
        history: Shared history store; only the pipeline mutates it.
        codec: Validates and decodes raw bytes.
        analyzer: Object exposing `async analyze(image, context) -> AnalysisResult`.
        notifier: Object exposing `async notify(item, image_bytes, ...) -> bool`.
        events: Optional event bus receiving `item-processed`.
    """

    def __init__(
        self,
        history: HistoryStore,
        codec: ImageCodec,
        analyzer: Any,
        notifier: Any,
        events: Optional[EventBus] = None,
    ) -> None:
        self.history = history
        self.codec = codec
        self.analyzer = analyzer
        self.notifier = notifier
        self.events = events
        self.total_requests = 0
        self.last_request: Optional[datetime] = None
        self.active_analyses = 0

    async def submit_base64(
        self,
        data: Union[str, bytes],
        source: ItemSource,
        metadata: Optional[ScreenshotMetadata] = None,
    ) -> ProcessedItem:
        """Decode a base64 string or data URL and submit the bytes.

        Malformed base64 is recorded as an ERROR item before the
        ValidationError is re-raised.
        """
        try:
            raw = decode_base64_image(data, max_bytes=self.codec.max_bytes)
        except ValidationError as exc:
            self._count_request()
            await self._record_rejection(b"", source, metadata, exc)
            raise
        return await self.submit(raw, source, metadata)

    async def submit(
        self,
        image_bytes: bytes,
        source: ItemSource,
        metadata: Optional[ScreenshotMetadata] = None,
    ) -> ProcessedItem:
        """Process one image and return its finalized item.

        Raises:
            ValidationError: The payload is empty, out of bounds or not an image.
                The recorded ERROR item is attached as `exc.item`.
            DecodeError: The payload cannot be decoded; same contract.
        """
        self._count_request()
        metadata = metadata or ScreenshotMetadata()
        raw = bytes(image_bytes)

        try:
            image = await asyncio.to_thread(self.codec.decode, raw)
        except (ValidationError, DecodeError) as exc:
            await self._record_rejection(raw, source, metadata, exc)
            raise

        item_id = new_item_id()
        item = ProcessedItem(
            id=item_id,
            source=source,
            name=metadata.filename or default_item_name(item_id, image.mime_type),
            byte_size=image.byte_size,
            mime_type=image.mime_type,
            image_bytes=raw,
            width=image.width,
            height=image.height,
            app=metadata.app,
        )
        await self.history.append(item)
        return await self._run(item, image)

    async def _run(self, item: ProcessedItem, image: DecodedImage) -> ProcessedItem:
        result: Optional[AnalysisResult] = None
        failure: Optional[AnalysisError] = None

        self.active_analyses += 1
        try:
            context = AnalysisContext(source=item.source, filename=item.name, app=item.app)
            result = await self.analyzer.analyze(image, context)
        except AnalysisError as exc:
            failure = exc
        except DecodeError as exc:
            # Provider re-encoding can still find a corrupt image the codec accepted.
            failure = AnalysisError(str(exc), kind=ErrorKind.DECODE_ERROR)
        except Exception as exc:
            LOGGER.exception("Unexpected analysis failure for %s", item.id)
            failure = AnalysisError(f"Analysis failed: {exc}", kind=ErrorKind.PROVIDER_UNAVAILABLE)
        finally:
            self.active_analyses -= 1

        notified = await self._notify(item, result, failure)

        def finalize(target: ProcessedItem) -> None:
            target.notified = notified
            if result is not None:
                target.complete(
                    result.summary,
                    analysis_id=result.analysis_id,
                    content_analysis=result.content_analysis,
                )
            else:
                target.fail(failure.kind, str(failure))

        if await self.history.update(item.id, finalize) is None:
            # Evicted while processing; finalize the detached copy anyway.
            finalize(item)

        if result is not None:
            LOGGER.info("Screenshot %s (%s) analyzed in %.2fs", item.id, item.source.value, result.latency)
        else:
            LOGGER.warning("Screenshot %s (%s) failed: %s", item.id, item.source.value, failure.kind.value)
        self._publish(item)
        return item

    async def _notify(
        self,
        item: ProcessedItem,
        result: Optional[AnalysisResult],
        failure: Optional[AnalysisError],
    ) -> bool:
        try:
            return bool(
                await self.notifier.notify(
                    item,
                    item.image_bytes,
                    summary=result.summary if result else None,
                    error=str(failure) if failure else None,
                    analysis_id=result.analysis_id if result else None,
                    content_analysis=result.content_analysis if result else None,
                )
            )
        except NotificationDeliveryError as exc:
            LOGGER.warning("Notification for %s not delivered: %s", item.id, exc)
            return False
        except Exception:
            LOGGER.exception("Notifier failed for %s", item.id)
            return False

    async def _record_rejection(
        self,
        raw: bytes,
        source: ItemSource,
        metadata: Optional[ScreenshotMetadata],
        exc: Union[ValidationError, DecodeError],
    ) -> ProcessedItem:
        metadata = metadata or ScreenshotMetadata()
        item_id = new_item_id()
        mime_type = sniff_mime_type(raw) or "application/octet-stream"
        item = ProcessedItem(
            id=item_id,
            source=source,
            name=metadata.filename or default_item_name(item_id, mime_type),
            byte_size=len(raw),
            mime_type=mime_type,
            image_bytes=raw,
            app=metadata.app,
        )
        item.fail(exc.kind, str(exc))
        await self.history.append(item)
        exc.item = item
        LOGGER.warning("Rejected %s screenshot: %s", source.value, exc)
        self._publish(item)
        return item

    def _count_request(self) -> None:
        self.total_requests += 1
        self.last_request = datetime.now(timezone.utc)

    def _publish(self, item: ProcessedItem) -> None:
        if self.events is not None:
            self.events.publish(ITEM_PROCESSED, item.to_dict())

    def stats(self) -> Dict[str, Any]:
        """Counters reported by `GET /status`."""
        return {
            "total_requests": self.total_requests,
            "last_request": self.last_request.isoformat() if self.last_request else None,
            "active_analyses": self.active_analyses,
        }
