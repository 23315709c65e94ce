# app/services/detector_client.py
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings

logger = logging.getLogger(__name__)

TOOL_NAME = "ai-image-detection"
HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class MissingCredentialError(RuntimeError):
    """Detector API key is not configured; raised before any network call."""


@dataclass
class DetectorResponse:
    ok: bool
    status_code: Optional[int]
    payload: Any = None
    error: Optional[str] = None


def _decode_body(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        text = r.text
        return {"text": text[:2000]} if text else None


class BaseDetectorClient:
    """Posts one JSON document to the detector and captures whatever comes back."""

    name = "base"

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    # ---------- Transport specifics ----------
    def build_request(self, image_url: str) -> Dict[str, Any]:
        raise NotImplementedError

    def build_headers(self) -> Dict[str, str]:
        return dict(HEADERS)

    # ---------- Public ----------
    async def detect(self, image_url: str) -> DetectorResponse:
        if not self.api_key:
            raise MissingCredentialError("Missing WINSTONAI_API_KEY in environment")

        body = self.build_request(image_url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(self.url, json=body, headers=self.build_headers())
        except httpx.TimeoutException as e:
            logger.warning("Detector (%s) timed out after %.0fs: %s", self.name, self.timeout, e)
            return DetectorResponse(ok=False, status_code=None, error=f"Timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning("Detector (%s) request failed: %s", self.name, e)
            return DetectorResponse(ok=False, status_code=None, error=f"{type(e).__name__}: {e}")

        payload = _decode_body(r)
        if not r.is_success:
            logger.warning("Detector (%s) answered HTTP %d", self.name, r.status_code)
            return DetectorResponse(
                ok=False,
                status_code=r.status_code,
                payload=payload,
                error=f"HTTP {r.status_code}",
            )
        return DetectorResponse(ok=True, status_code=r.status_code, payload=payload)


class RestDetectorClient(BaseDetectorClient):
    name = "rest"

    def build_request(self, image_url: str) -> Dict[str, Any]:
        return {"url": image_url}

    def build_headers(self) -> Dict[str, str]:
        return {**HEADERS, "Authorization": f"Bearer {self.api_key}"}


class RpcDetectorClient(BaseDetectorClient):
    name = "rpc"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._ids = itertools.count(1)

    def build_request(self, image_url: str) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {
                "name": TOOL_NAME,
                "arguments": {"url": image_url, "apiKey": self.api_key},
            },
        }


def get_detector_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseDetectorClient:
    if settings.detector_transport == "rest":
        return RestDetectorClient(
            settings.detector_rest_url,
            settings.detector_api_key,
            timeout=settings.detector_timeout,
            transport=transport,
        )
    return RpcDetectorClient(
        settings.detector_rpc_url,
        settings.detector_api_key,
        timeout=settings.detector_timeout,
        transport=transport,
    )
