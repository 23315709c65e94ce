# app/services/self_fetch.py
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

PREVIEW_BYTES = 16
HEADERS = {"User-Agent": "ai-image-detector-selfcheck/1.0"}


@dataclass(frozen=True)
class SelfFetchReport:
    url: str
    ok: bool
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    byte_length: int = 0
    first_bytes_hex: str = ""
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SelfFetchVerifier:
    """
    Retrieve a just-published URL the way the external detector will.

    Purely diagnostic: every HTTP status is a valid answer and network
    failures are recorded on the report, never raised.
    """

    def __init__(self, *, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def verify(self, url: str) -> SelfFetchReport:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
                headers=HEADERS,
            ) as client:
                r = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Self-fetch of %s failed: %s", url, e)
            return SelfFetchReport(url=url, ok=False, error=f"{type(e).__name__}: {e}")

        body = r.content or b""
        report = SelfFetchReport(
            url=url,
            ok=r.is_success and len(body) > 0,
            status_code=r.status_code,
            content_type=r.headers.get("content-type"),
            byte_length=len(body),
            first_bytes_hex=body[:PREVIEW_BYTES].hex(),
        )
        if not report.ok:
            logger.warning(
                "Self-fetch of %s returned %s (%d bytes, %s)",
                url, r.status_code, report.byte_length, report.content_type,
            )
        return report
