"""
Shared pytest fixtures for the screenshot relay tests.

Providers are replaced with in-process fakes so no test touches the network:
a fake OpenAI client returning SimpleNamespace responses, a scripted analyzer
and a recording notifier.
"""

import base64
import io
import json
import os
from types import SimpleNamespace
from typing import Any, List, Optional

import pytest
from PIL import Image

from models.processed_item import ContentAnalysis
from services.image_codec import ImageCodec
from services.openai.analysis_client import AnalysisResult
from services.openai.vision_schema import FUNCTION_NAME
from services.pipeline.event_bus import EventBus
from services.pipeline.history_store import HistoryStore
from services.pipeline.processing_pipeline import ProcessingPipeline
from utils.errors import NotificationDeliveryError


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

def make_png(width: int = 64, height: int = 64) -> bytes:
    """Random-noise PNG; noise keeps it well above the 1024 byte minimum."""
    img = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def make_image(fmt: str, width: int = 32, height: int = 32) -> bytes:
    img = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def png_b64(png_bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


# ---------------------------------------------------------------------------
# OpenAI fakes
# ---------------------------------------------------------------------------

def fake_response(summary: str = "A chart of quarterly revenue.", response_id: str = "resp_123", **fields: Any):
    args = {
        "summary": summary,
        "content_type": fields.get("content_type", "document"),
        "webpage_url": fields.get("webpage_url", "none"),
        "research_topics": fields.get("research_topics", []),
        "user_intent": fields.get("user_intent", "Save the numbers"),
        "follow_up": fields.get("follow_up", "Compare with last year"),
    }
    return SimpleNamespace(
        id=response_id,
        output=[SimpleNamespace(type="function_call", name=FUNCTION_NAME, arguments=json.dumps(args))],
        output_text="",
        usage=SimpleNamespace(input_tokens=120, output_tokens=40),
    )


class FakeResponses:
    """Stand-in for `client.responses`; pops scripted results in order."""

    def __init__(self, results: List[Any]) -> None:
        self.results = list(results)
        self.calls: List[dict] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class FakeOpenAIClient:
    def __init__(self, *results: Any) -> None:
        self.responses = FakeResponses(list(results))
        self.closed = False

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Pipeline fakes
# ---------------------------------------------------------------------------

class FakeAnalyzer:
    """Analyzer returning a fixed summary, or raising scripted errors first."""

    def __init__(self, summary: str = "Stub summary", errors: Optional[List[Exception]] = None) -> None:
        self.summary = summary
        self.errors = list(errors or [])
        self.calls: List[Any] = []
        self.closed = False

    async def analyze(self, image, context) -> AnalysisResult:
        self.calls.append((image, context))
        if self.errors:
            raise self.errors.pop(0)
        return AnalysisResult(
            summary=self.summary,
            analysis_id=f"analysis-{len(self.calls)}",
            content_analysis=ContentAnalysis(content_type="webpage", webpage_url="example.com"),
        )

    async def close(self) -> None:
        self.closed = True


class FakeNotifier:
    configured = True

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[dict] = []
        self.closed = False

    async def notify(self, item, image_bytes, **kwargs) -> bool:
        self.calls.append({"item": item, "image_bytes": image_bytes, **kwargs})
        if self.fail:
            raise NotificationDeliveryError("Telegram sendPhoto error 502: Bad Gateway")
        return True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def make_pipeline(events):
    """Factory building a pipeline around the given fakes."""

    def _make(analyzer=None, notifier=None, *, max_bytes=15 * 1024 * 1024, min_bytes=1024, limit=50):
        history = HistoryStore(limit)
        codec = ImageCodec(max_bytes=max_bytes, min_bytes=min_bytes)
        return ProcessingPipeline(history, codec, analyzer or FakeAnalyzer(), notifier or FakeNotifier(), events)

    return _make
