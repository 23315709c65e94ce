# tests/test_detector_client.py
import json

import httpx
import pytest

from app.core.config import Settings
from app.services.detector_client import (
    MissingCredentialError,
    RestDetectorClient,
    RpcDetectorClient,
    get_detector_client,
)

IMAGE_URL = "https://svc.test/uploads/1700000000000-abc.png"


@pytest.mark.asyncio
async def test_rpc_envelope_shape(upstream):
    client = RpcDetectorClient("https://detector.test/mcp/v1", "k-123", transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)

    assert resp.ok and resp.status_code == 200
    req = upstream.requests[-1]
    assert req.method == "POST"
    assert str(req.url) == "https://detector.test/mcp/v1"
    body = json.loads(req.content)
    assert body["jsonrpc"] == "2.0"
    assert body["method"] == "tools/call"
    assert body["params"]["name"] == "ai-image-detection"
    assert body["params"]["arguments"] == {"url": IMAGE_URL, "apiKey": "k-123"}
    assert "authorization" not in req.headers


@pytest.mark.asyncio
async def test_rpc_ids_increase(upstream):
    client = RpcDetectorClient("https://detector.test/mcp/v1", "k", transport=upstream.transport)
    await client.detect(IMAGE_URL)
    await client.detect(IMAGE_URL)
    ids = [json.loads(r.content)["id"] for r in upstream.requests]
    assert ids == [1, 2]


@pytest.mark.asyncio
async def test_rest_sends_bearer_and_url(upstream):
    upstream.payload = {"ai_probability": 91, "version": "3"}
    client = RestDetectorClient("https://detector.test/v2/image-detection", "secret", transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)

    assert resp.ok
    assert resp.payload == {"ai_probability": 91, "version": "3"}
    req = upstream.requests[-1]
    assert req.headers["authorization"] == "Bearer secret"
    assert json.loads(req.content) == {"url": IMAGE_URL}


@pytest.mark.asyncio
async def test_missing_key_short_circuits_before_network(upstream):
    client = RestDetectorClient("https://detector.test/v2/image-detection", "", transport=upstream.transport)
    with pytest.raises(MissingCredentialError):
        await client.detect(IMAGE_URL)
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_non_2xx_is_captured_with_body(upstream):
    upstream.status_code = 401
    upstream.payload = {"error": {"message": "invalid api key"}}
    client = RestDetectorClient("https://detector.test/v2/image-detection", "bad", transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)
    assert not resp.ok
    assert resp.status_code == 401
    assert resp.payload == {"error": {"message": "invalid api key"}}
    assert resp.error == "HTTP 401"


@pytest.mark.asyncio
async def test_non_json_error_body_is_kept_as_text(upstream):
    upstream.status_code = 502
    upstream.payload = b"<html>Bad Gateway</html>"
    client = RpcDetectorClient("https://detector.test/mcp/v1", "k", transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)
    assert not resp.ok
    assert resp.payload == {"text": "<html>Bad Gateway</html>"}


@pytest.mark.asyncio
async def test_timeout_is_captured_not_raised(upstream):
    upstream.exc = httpx.ReadTimeout("read timed out")
    client = RpcDetectorClient("https://detector.test/mcp/v1", "k", timeout=0.1, transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)
    assert not resp.ok
    assert resp.status_code is None
    assert resp.error.startswith("Timeout")


@pytest.mark.asyncio
async def test_connection_refused_is_captured(upstream):
    upstream.exc = httpx.ConnectError("connection refused")
    client = RpcDetectorClient("https://detector.test/mcp/v1", "k", transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)
    assert not resp.ok
    assert "ConnectError" in resp.error


@pytest.mark.asyncio
async def test_rpc_error_with_200_is_returned_as_payload(upstream):
    upstream.payload = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "bad key"}}
    client = RpcDetectorClient("https://detector.test/mcp/v1", "k", transport=upstream.transport)
    resp = await client.detect(IMAGE_URL)
    assert resp.ok
    assert resp.payload["error"]["message"] == "bad key"


def test_factory_picks_transport():
    rest = get_detector_client(Settings(detector_api_key="k", detector_transport="rest", detector_timeout=7))
    rpc = get_detector_client(Settings(detector_api_key="k"))
    assert isinstance(rest, RestDetectorClient) and rest.timeout == 7
    assert isinstance(rpc, RpcDetectorClient)
    assert rpc.url == "https://api.gowinston.ai/mcp/v1"


def test_app_reuses_one_client_so_rpc_ids_increase():
    from types import SimpleNamespace
    from app.dependencies import get_detector

    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
    settings = Settings(detector_api_key="k")
    first = get_detector(request, settings)
    second = get_detector(request, settings)
    assert first is second
    assert first.build_request(IMAGE_URL)["id"] == 1
    assert second.build_request(IMAGE_URL)["id"] == 2
