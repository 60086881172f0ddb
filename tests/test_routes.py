import asyncio
import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeAnalyzer
from main import create_app
from models.server_models import ServerConfig, ServerSession
from utils.errors import ProviderAuthError


def _app(pipeline):
    session = ServerSession(
        config=ServerConfig(openai_api_key="sk-test", telegram_bot_token="t", telegram_chat_id="1"),
        host="0.0.0.0",
        port=5001,
        local_ip="192.168.1.20",
        pipeline=pipeline,
    )
    return create_app(session)


@pytest.fixture
def client(make_pipeline):
    pipeline = make_pipeline(FakeAnalyzer(summary="A receipt from a coffee shop."))
    with TestClient(_app(pipeline)) as test_client:
        yield test_client


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def test_png_round_trip(client, png_bytes):
    response = client.post("/screenshot", json={"image": _b64(png_bytes), "metadata": {"source": "ios_shortcut"}})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["summary"] == "A receipt from a coffee shop."
    assert body["size"] == len(png_bytes)
    assert body["type"] == "image/png"
    assert body["source"] == "ios_push"
    assert body["follow_up_available"] is True
    assert body["analysis_id"]


def test_data_url_and_desktop_source(client, png_bytes):
    payload = {"image": "data:image/png;base64," + _b64(png_bytes), "metadata": {"source": "desktop_auto"}}
    body = client.post("/screenshot", json=payload).json()
    assert body["success"] is True
    assert body["source"] == "desktop_auto"


def test_size_boundary(make_pipeline, png_bytes):
    at_limit = TestClient(_app(make_pipeline(max_bytes=len(png_bytes))))
    assert at_limit.post("/screenshot", json={"image": _b64(png_bytes)}).status_code == 200

    over_limit = TestClient(_app(make_pipeline(max_bytes=len(png_bytes) - 1)))
    response = over_limit.post("/screenshot", json={"image": _b64(png_bytes)})
    assert response.status_code == 413
    assert response.json()["success"] is False


@pytest.mark.parametrize(
    "kwargs, status",
    [
        ({"content": b"{not json", "headers": {"content-type": "application/json"}}, 400),
        ({"json": {"metadata": {}}}, 400),
        ({"json": {"image": "***"}}, 400),
        ({"json": {"image": _b64(b"tiny")}}, 400),
        ({"json": {"image": _b64(b"plain text " * 200)}}, 415),
        ({"json": {"image": "data:text/plain;base64," + _b64(b"hello")}}, 415),
    ],
)
def test_rejected_payloads(client, kwargs, status):
    response = client.post("/screenshot", **kwargs)
    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert body["error"]
    assert body["timestamp"]


def test_corrupt_image_is_unprocessable(client, png_bytes):
    response = client.post("/screenshot", json={"image": _b64(png_bytes[: len(png_bytes) // 2])})
    assert response.status_code == 422


def test_provider_failure_is_reported_in_body(make_pipeline, png_bytes):
    pipeline = make_pipeline(FakeAnalyzer(errors=[ProviderAuthError("AI provider rejected the API key.")]))
    response = TestClient(_app(pipeline)).post("/screenshot", json={"image": _b64(png_bytes)})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["error_kind"] == "AUTH_ERROR"


def test_health_and_status(client, png_bytes):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"

    client.post("/screenshot", json={"image": _b64(png_bytes)})
    status = client.get("/status").json()
    assert status["status"] == "running"
    assert status["endpoint_url"] == "http://192.168.1.20:5001/screenshot"
    assert status["telegram_configured"] is True
    assert status["desktop_detection"] is False
    assert status["total_requests"] == 1
    assert status["last_request"]


def test_concurrent_requests_get_distinct_items(make_pipeline, png_bytes):
    pipeline = make_pipeline()
    app = _app(pipeline)

    async def run():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as http:
            responses = await asyncio.gather(
                *(http.post("/screenshot", json={"image": _b64(png_bytes)}) for _ in range(8))
            )
        return responses, await pipeline.history.snapshot()

    responses, history = asyncio.run(run())
    ids = [r.json()["id"] for r in responses]
    assert all(r.status_code == 200 for r in responses)
    assert len(set(ids)) == 8
    assert {item.id for item in history} == set(ids)


def test_oversized_base64_body_is_rejected_early(make_pipeline, png_bytes):
    client = TestClient(_app(make_pipeline(max_bytes=2048)))
    response = client.post("/screenshot", json={"image": _b64(png_bytes) + "\n"})
    assert response.status_code == 413
    assert "too large" in response.json()["error"]
