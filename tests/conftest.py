# tests/conftest.py
import os
import sys
import json
import struct
import tempfile
import zlib
import datetime as _dt
from pathlib import Path
from dotenv import load_dotenv

# 1) Load .env from project root, then force TESTING and a throwaway upload dir
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env", override=False)
os.environ["TESTING"] = "1"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="uploads_test_")
os.environ.setdefault("LOG_FILE", str(ROOT / ".test_logs" / "app.log"))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import httpx
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.core.config import Settings
from app.dependencies import get_settings, get_detector, get_self_fetch_verifier
from app.services.detector_client import get_detector_client
from app.services.self_fetch import SelfFetchVerifier


def pytest_configure(config):
    """
    If pytest-cov is available, enable coverage of the 'app' package
    and show missing lines in the terminal report by default.
    """
    cov = config.pluginmanager.getplugin("cov")
    if cov:
        config.option.cov_source = ["app"]
        config.option.cov_report = ["term-missing"]

# ─────────────────────────────────────────────────────────────────────────────
# Image byte builders
# ─────────────────────────────────────────────────────────────────────────────
def _png_chunk(kind: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))

def build_png(width: int, height: int) -> bytes:
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", ihdr)
        + _png_chunk(b"IDAT", zlib.compress(b"\x00" * 16))
        + _png_chunk(b"IEND", b"")
    )

def build_jpeg(width: int, height: int, sof: int = 0xC0, prefix_segments: bytes = b"") -> bytes:
    app0 = b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    comps = b"\x01\x22\x00\x02\x11\x01\x03\x11\x01"
    sof_body = struct.pack(">BHHB", 8, height, width, 3) + comps
    sof_seg = bytes([0xFF, sof]) + struct.pack(">H", len(sof_body) + 2) + sof_body
    sos = b"\xff\xda" + struct.pack(">H", 12) + b"\x03\x01\x00\x02\x11\x03\x11\x00\x3f\x00"
    return b"\xff\xd8" + app0 + prefix_segments + sof_seg + sos + b"\x00" * 32 + b"\xff\xd9"

def build_webp() -> bytes:
    body = b"WEBP" + b"VP8 " + struct.pack("<I", 10) + b"\x00" * 10
    return b"RIFF" + struct.pack("<I", len(body)) + body

@pytest.fixture
def make_png():
    return build_png

@pytest.fixture
def make_jpeg():
    return build_jpeg

@pytest.fixture
def make_webp():
    return build_webp

# ─────────────────────────────────────────────────────────────────────────────
# Settings + fake detector
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        detector_api_key="test-key",
        detector_transport="rpc",
        detector_rpc_url="https://detector.test/mcp/v1",
        detector_rest_url="https://detector.test/v2/image-detection",
        upload_dir=tmp_path / "uploads",
        retention_seconds=0,
    )

class FakeDetector:
    """Scriptable upstream: records every request and replies with `payload`/`status_code`."""

    def __init__(self):
        self.status_code = 200
        self.payload = {"result": {"content": [{"type": "text", "text": "ok"}]}}
        self.exc = None
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        if isinstance(self.payload, (bytes, str)):
            return httpx.Response(self.status_code, content=self.payload)
        return httpx.Response(self.status_code, json=self.payload)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

@pytest.fixture
def upstream() -> FakeDetector:
    return FakeDetector()

# ───── Async HTTP client ─────
@pytest.fixture
async def async_client(settings, upstream):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_detector] = lambda: get_detector_client(settings, transport=upstream.transport)
    # self-fetch loops back through the app itself
    app.dependency_overrides[get_self_fetch_verifier] = lambda: SelfFetchVerifier(
        timeout=5, transport=ASGITransport(app=app)
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()

# ───── Test‐result logging ─────
_LOG_PATH = ROOT / ".test_logs" / "test_logs.txt"

def pytest_sessionstart(session):
    _LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    with _LOG_PATH.open("w", encoding="utf-8") as fp:
        fp.write(f"Test run started: {_dt.datetime.now(_dt.timezone.utc).isoformat()}\n")
        fp.write("=" * 70 + "\n")

def pytest_runtest_logreport(report):
    if report.when != "call":
        return
    outcome = "PASSED" if report.passed else "FAILED" if report.failed else "SKIPPED"
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    with _LOG_PATH.open("a", encoding="utf-8") as fp:
        fp.write(f"{ts} | {report.nodeid} | {outcome} | {getattr(report,'duration',0):.2f}s\n")
        if report.failed:
            fp.write("--- Failure details below ---\n")
            longrepr = getattr(report, "longreprtext", None) or str(report.longrepr)
            fp.write(f"{longrepr}\n")
            fp.write("-" * 70 + "\n")
