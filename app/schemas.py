# app/schemas.py
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------- Detection -------------------- #

class SelfFetchReportOut(BaseModel):
    url: str
    ok: bool
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    byte_length: int = 0
    first_bytes_hex: str = ""
    error: Optional[str] = None


class ParsedResult(BaseModel):
    ai_probability: Optional[float] = None
    human_probability: Optional[float] = None
    score: Optional[Any] = None
    version: Optional[Any] = None
    mime_type: Optional[Any] = None
    credits_used: Optional[Any] = None
    credits_remaining: Optional[Any] = None
    ai_watermark_detected: Optional[Any] = None


class DetectionResponse(BaseModel):
    """Envelope returned for every /detect-image call, success or not."""

    ai_score: float = Field(0.5, ge=0.0, le=1.0)
    label: str = Field("Unknown", min_length=1)
    version: str
    raw: Optional[Any] = None
    image_url: Optional[str] = None
    parsed: Optional[ParsedResult] = None
    note: Optional[str] = None
    reason: Optional[str] = None
    status: Optional[int] = None
    self_fetch: Optional[SelfFetchReportOut] = None

    model_config = ConfigDict(extra="ignore")


# -------------------- Health -------------------- #

class HealthCheck(BaseModel):
    status: str


def envelope_content(body: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a rendered envelope and dump only the keys that were set."""
    return DetectionResponse(**body).model_dump(mode="json", exclude_unset=True)
