import asyncio
import base64

import pytest

from conftest import FakeAnalyzer, FakeNotifier
from models.processed_item import ItemSource, ItemStatus, ScreenshotMetadata
from services.pipeline.event_bus import ITEM_PROCESSED
from utils.errors import DecodeError, ErrorKind, ProviderAuthError, ProviderTimeout, ValidationError


def test_successful_submission_completes(make_pipeline, png_bytes):
    notifier = FakeNotifier()
    pipeline = make_pipeline(notifier=notifier)
    meta = ScreenshotMetadata(app="Safari", filename="page.png")

    item = asyncio.run(pipeline.submit(png_bytes, ItemSource.IOS_PUSH, meta))

    assert item.status is ItemStatus.COMPLETED
    assert item.analysis_summary == "Stub summary"
    assert item.byte_size == len(png_bytes)
    assert item.mime_type == "image/png"
    assert item.name == "page.png"
    assert item.notified is True
    assert notifier.calls[0]["analysis_id"] == "analysis-1"
    assert notifier.calls[0]["image_bytes"] == png_bytes
    assert pipeline.stats()["total_requests"] == 1
    assert pipeline.stats()["active_analyses"] == 0


def test_notification_failure_still_completes(make_pipeline, png_bytes):
    pipeline = make_pipeline(notifier=FakeNotifier(fail=True))
    item = asyncio.run(pipeline.submit(png_bytes, ItemSource.IOS_PUSH))
    assert item.status is ItemStatus.COMPLETED
    assert item.analysis_summary == "Stub summary"
    assert item.notified is False


def test_analysis_failure_is_recorded_and_still_notified(make_pipeline, png_bytes):
    notifier = FakeNotifier()
    pipeline = make_pipeline(FakeAnalyzer(errors=[ProviderAuthError("bad key")]), notifier)
    item = asyncio.run(pipeline.submit(png_bytes, ItemSource.DESKTOP_AUTO))
    assert item.status is ItemStatus.ERROR
    assert item.error_kind is ErrorKind.AUTH_ERROR
    assert item.analysis_summary is None
    assert notifier.calls[0]["error"] == "bad key"
    assert notifier.calls[0]["summary"] is None


def test_timeout_failure_kind(make_pipeline, png_bytes):
    pipeline = make_pipeline(FakeAnalyzer(errors=[ProviderTimeout("timed out")]))
    item = asyncio.run(pipeline.submit(png_bytes, ItemSource.IOS_PUSH))
    assert item.error_kind is ErrorKind.TIMEOUT


def test_invalid_base64_records_validation_error(make_pipeline):
    pipeline = make_pipeline()

    async def run():
        with pytest.raises(ValidationError) as excinfo:
            await pipeline.submit_base64("%%%not-base64%%%", ItemSource.IOS_PUSH)
        return excinfo.value, await pipeline.history.snapshot()

    exc, items = asyncio.run(run())
    assert exc.item is items[0]
    assert items[0].status is ItemStatus.ERROR
    assert items[0].error_kind is ErrorKind.VALIDATION_ERROR


def test_corrupt_image_records_decode_error_without_analysis(make_pipeline, png_bytes):
    analyzer = FakeAnalyzer()
    notifier = FakeNotifier()
    pipeline = make_pipeline(analyzer, notifier)
    corrupt = png_bytes[: len(png_bytes) // 2]

    async def run():
        with pytest.raises(DecodeError):
            await pipeline.submit_base64(base64.b64encode(corrupt).decode(), ItemSource.IOS_PUSH)
        return await pipeline.history.snapshot()

    items = asyncio.run(run())
    assert items[0].error_kind is ErrorKind.DECODE_ERROR
    assert analyzer.calls == []
    assert notifier.calls == []



def test_decode_failure_during_analysis_is_finalized(make_pipeline, events, png_bytes):
    notifier = FakeNotifier()
    analyzer = FakeAnalyzer(errors=[DecodeError("Decoded bytes are not a supported image format")])
    pipeline = make_pipeline(analyzer, notifier)

    async def run():
        queue = events.subscribe()
        item = await pipeline.submit(png_bytes, ItemSource.DESKTOP_AUTO)
        return item, await pipeline.history.snapshot(), queue.get_nowait()

    item, items, event = asyncio.run(run())
    assert item.status is ItemStatus.ERROR
    assert item.error_kind is ErrorKind.DECODE_ERROR
    assert items[0] is item
    assert notifier.calls[0]["error"] == "Decoded bytes are not a supported image format"
    assert event.data["status"] == "error"
    assert pipeline.stats()["active_analyses"] == 0


def test_unexpected_analyzer_error_is_finalized(make_pipeline, png_bytes):
    notifier = FakeNotifier()
    pipeline = make_pipeline(FakeAnalyzer(errors=[RuntimeError("boom")]), notifier)

    async def run():
        item = await pipeline.submit(png_bytes, ItemSource.IOS_PUSH)
        return item, await pipeline.history.snapshot()

    item, items = asyncio.run(run())
    assert item.status is ItemStatus.ERROR
    assert item.error_kind is ErrorKind.PROVIDER_UNAVAILABLE
    assert "boom" in item.error_detail
    assert items[0].status is ItemStatus.ERROR
    assert len(notifier.calls) == 1


def test_crashing_notifier_still_completes(make_pipeline, png_bytes):
    class CrashingNotifier(FakeNotifier):
        async def notify(self, item, image_bytes, **kwargs):
            raise RuntimeError("socket closed")

    item = asyncio.run(make_pipeline(notifier=CrashingNotifier()).submit(png_bytes, ItemSource.IOS_PUSH))
    assert item.status is ItemStatus.COMPLETED
    assert item.notified is False


def test_oversized_base64_is_rejected_before_decoding(make_pipeline, png_bytes):
    pipeline = make_pipeline(max_bytes=1024)

    async def run():
        with pytest.raises(ValidationError) as excinfo:
            await pipeline.submit_base64(base64.b64encode(png_bytes).decode(), ItemSource.IOS_PUSH)
        return excinfo.value, await pipeline.history.snapshot()

    exc, items = asyncio.run(run())
    assert exc.status_code == 413
    assert items[0].status is ItemStatus.ERROR
    assert items[0].error_kind is ErrorKind.VALIDATION_ERROR


def test_item_processed_event_is_published(make_pipeline, events, png_bytes):
    pipeline = make_pipeline()

    async def run():
        queue = events.subscribe()
        item = await pipeline.submit(png_bytes, ItemSource.MANUAL_UPLOAD)
        return item, queue.get_nowait()

    item, event = asyncio.run(run())
    assert event.type == ITEM_PROCESSED
    assert event.data["id"] == item.id
    assert event.data["status"] == "completed"
    assert event.data["source"] == "manual_upload"
    assert "image_bytes" not in event.data


def test_concurrent_submissions_get_distinct_ids_in_arrival_order(make_pipeline, png_bytes):
    class SlowFirstAnalyzer(FakeAnalyzer):
        async def analyze(self, image, context):
            if not self.calls:
                self.calls.append(context)
                await asyncio.sleep(0.05)
                return await super().analyze(image, context)
            return await super().analyze(image, context)

    pipeline = make_pipeline(SlowFirstAnalyzer())

    async def run():
        items = await asyncio.gather(
            *(pipeline.submit(png_bytes, ItemSource.IOS_PUSH, ScreenshotMetadata(filename=f"{i}.png")) for i in range(5))
        )
        return items, await pipeline.history.snapshot()

    items, history = asyncio.run(run())
    assert len({item.id for item in items}) == 5
    assert all(item.status is ItemStatus.COMPLETED for item in items)
    assert sorted(item.name for item in history) == [f"{i}.png" for i in range(5)]
    # history is ordered by ingestion, not by completion
    stamps = [item.timestamp for item in history]
    assert stamps == sorted(stamps, reverse=True)
