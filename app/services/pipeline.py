# app/services/pipeline.py
"""
Upload → validate → publish → self-fetch → detect → normalize.

Every exit is a ``DetectionOutcome``: a tag describing what happened plus a
``NormalizedResult`` that is safe to hand to the caller as-is. Only
``publish_failed`` and ``internal_error`` map to a non-200 status.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from app.core.config import Settings
from app.services.asset_store import AssetStore, PublishError
from app.services.detector_client import BaseDetectorClient, MissingCredentialError
from app.services.normalizer import (
    DETECTOR_NAME,
    NormalizationKind,
    NormalizedResult,
    normalize_payload,
)
from app.services.self_fetch import SelfFetchReport, SelfFetchVerifier
from app.services.validation import rejection_label, validate_image
from app.utils.json_utils import format_json_response

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    OK = "ok"
    INPUT_INVALID = "input_invalid"
    FORMAT_REJECTED = "format_rejected"
    CONFIG_MISSING = "config_missing"
    PUBLISH_FAILED = "publish_failed"
    UPSTREAM_TRANSPORT_ERROR = "upstream_transport_error"
    UPSTREAM_LOGICAL_ERROR = "upstream_logical_error"
    UPSTREAM_UNPARSEABLE = "upstream_unparseable"
    INTERNAL_ERROR = "internal_error"


_FATAL = {OutcomeKind.PUBLISH_FAILED, OutcomeKind.INTERNAL_ERROR}


@dataclass
class DetectionOutcome:
    kind: OutcomeKind
    result: NormalizedResult = field(default_factory=NormalizedResult)
    reason: Optional[str] = None
    image_url: Optional[str] = None
    self_fetch: Optional[SelfFetchReport] = None
    upstream_status: Optional[int] = None
    detail: Optional[str] = None

    @property
    def http_status(self) -> int:
        return 500 if self.kind in _FATAL else 200


def input_invalid(label: str) -> DetectionOutcome:
    return DetectionOutcome(OutcomeKind.INPUT_INVALID, NormalizedResult(label=label), reason="INPUT_INVALID")


def internal_error(detail: Optional[str] = None) -> DetectionOutcome:
    return DetectionOutcome(
        OutcomeKind.INTERNAL_ERROR, NormalizedResult(label="Server error"), detail=detail,
    )


def render_envelope(outcome: DetectionOutcome) -> Dict[str, Any]:
    """Flatten an outcome into the single response shape every caller sees."""
    res = outcome.result
    body: Dict[str, Any] = {
        "ai_score": res.ai_score,
        "label": res.label,
        "version": res.version,
        "raw": res.raw,
    }
    if outcome.image_url:
        body["image_url"] = outcome.image_url
    if res.parsed is not None:
        body["parsed"] = res.parsed
    if res.note:
        body["note"] = res.note
    if outcome.kind is not OutcomeKind.OK:
        body["reason"] = outcome.reason or outcome.kind.value
    if outcome.upstream_status is not None:
        body["status"] = outcome.upstream_status
    if outcome.self_fetch is not None:
        body["self_fetch"] = outcome.self_fetch.as_dict()
    return body


class DetectionPipeline:
    def __init__(
        self,
        settings: Settings,
        store: AssetStore,
        client: BaseDetectorClient,
        verifier: SelfFetchVerifier,
    ):
        self.settings = settings
        self.store = store
        self.client = client
        self.verifier = verifier

    async def run(
        self,
        data: bytes,
        *,
        filename: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        fallback_host: Optional[str] = None,
    ) -> DetectionOutcome:
        try:
            outcome = await self._run(data, filename, headers or {}, fallback_host)
        except Exception as e:
            logger.error("Unexpected error in detection pipeline: %s", e, exc_info=True)
            outcome = internal_error(str(e))
        self._log(outcome)
        return outcome

    async def _run(
        self,
        data: bytes,
        filename: Optional[str],
        headers: Mapping[str, str],
        fallback_host: Optional[str],
    ) -> DetectionOutcome:
        # 1) validate
        if not data:
            return input_invalid("No image uploaded")
        if len(data) > self.settings.max_upload_bytes:
            return input_invalid(f"Image too large (limit {self.settings.max_upload_bytes} bytes)")
        check = validate_image(data, self.settings.min_image_side)
        if not check.accepted:
            return DetectionOutcome(
                OutcomeKind.FORMAT_REJECTED,
                NormalizedResult(label=rejection_label(check)),
                reason=check.reason.value,
            )
        if not self.settings.has_credentials:
            return DetectionOutcome(
                OutcomeKind.CONFIG_MISSING,
                NormalizedResult(label="Detector not configured (MISSING_CREDENTIAL)"),
                reason="MISSING_CREDENTIAL",
            )

        # 2) publish
        try:
            asset = await self.store.publish(
                data,
                check.format,
                headers,
                default_scheme=self.settings.public_scheme,
                fallback_host=fallback_host,
                filename_hint=filename,
            )
        except PublishError as e:
            return DetectionOutcome(
                OutcomeKind.PUBLISH_FAILED,
                NormalizedResult(label="Server error: could not store upload"),
                detail=str(e),
            )

        # 3) self-check (diagnostic only)
        report = await self.verifier.verify(asset.public_url)

        # 4) detect
        try:
            upstream = await self.client.detect(asset.public_url)
        except MissingCredentialError as e:
            return DetectionOutcome(
                OutcomeKind.CONFIG_MISSING,
                NormalizedResult(label=f"Detector not configured: {e}"),
                reason="MISSING_CREDENTIAL",
                image_url=asset.public_url,
                self_fetch=report,
            )
        if not upstream.ok:
            result, kind = normalize_payload(upstream.payload)
            if kind is not NormalizationKind.LOGICAL_ERROR:
                result = NormalizedResult(
                    label=f"{DETECTOR_NAME} error: {upstream.error or 'request failed'}",
                    raw=upstream.payload,
                )
            return DetectionOutcome(
                OutcomeKind.UPSTREAM_TRANSPORT_ERROR,
                result,
                image_url=asset.public_url,
                self_fetch=report,
                upstream_status=upstream.status_code,
                detail=upstream.error,
            )

        # 5) normalize
        result, kind = normalize_payload(upstream.payload)
        return DetectionOutcome(
            OutcomeKind(kind.value),
            result,
            image_url=asset.public_url,
            self_fetch=report,
            upstream_status=upstream.status_code if kind is not NormalizationKind.OK else None,
        )

    async def run_detached(self, data: bytes, **kwargs) -> DetectionOutcome:
        """Like ``run`` but the work survives cancellation of the awaiting request."""
        return await asyncio.shield(self.run(data, **kwargs))

    def _log(self, outcome: DetectionOutcome) -> None:
        if outcome.kind is OutcomeKind.OK:
            logger.info(
                "Detection ok: score=%.3f label=%s url=%s",
                outcome.result.ai_score, outcome.result.label, outcome.image_url,
            )
            return
        context = {
            "kind": outcome.kind,
            "reason": outcome.reason,
            "detail": outcome.detail,
            "image_url": outcome.image_url,
            "upstream_status": outcome.upstream_status,
            "self_fetch": outcome.self_fetch,
            "raw": outcome.result.raw,
        }
        level = logging.ERROR if outcome.kind in _FATAL else logging.WARNING
        logger.log(level, "Detection %s: %s", outcome.kind.value, format_json_response(context))
