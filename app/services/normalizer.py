# app/services/normalizer.py
"""
Turn whatever the detector sent back into a score and a label.

The upstream shape is not stable. Depending on transport and service version
the verdict arrives as structured fields, as JSON embedded in a free-text
tool message ("... Full API Response : {...}"), as an error text, or not at
all. Each shape gets one extraction step; steps run in a fixed order and the
first that recognises the payload wins.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DETECTOR_NAME = "Winston"
FALLBACK_VERSION = "winston-ai-image-detection"
NEUTRAL_SCORE = 0.5
UNKNOWN_LABEL = "Unknown"
AI_THRESHOLD = 0.65
HUMAN_THRESHOLD = 0.35

EMBEDDED_MARKER = "Full API Response"
ERROR_TEXT = "there was an error"
UNPARSEABLE_NOTE = "Could not parse detector result (no numeric probabilities found)."

SCORE_ALIASES = ("ai_score", "ai_probability", "score", "probability")
HUMAN_ALIASES = ("human_probability", "human_score")
PARSED_KEYS = (
    "ai_probability", "human_probability", "score", "version", "mime_type",
    "credits_used", "credits_remaining", "ai_watermark_detected",
)


class NormalizationKind(str, Enum):
    OK = "ok"
    LOGICAL_ERROR = "upstream_logical_error"
    UNPARSEABLE = "upstream_unparseable"


@dataclass
class NormalizedResult:
    ai_score: float = NEUTRAL_SCORE
    label: str = UNKNOWN_LABEL
    version: str = FALLBACK_VERSION
    raw: Any = None
    parsed: Optional[Dict[str, Any]] = None
    note: Optional[str] = None

    def __post_init__(self):
        score = self.ai_score
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
            score = NEUTRAL_SCORE
        self.ai_score = min(1.0, max(0.0, float(score)))
        if not isinstance(self.label, str) or not self.label.strip():
            self.label = UNKNOWN_LABEL


@dataclass
class _Extraction:
    error: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


# ------------------------------------------------------------------
# Score helpers
# ------------------------------------------------------------------
def normalize_score(value: Any) -> Optional[float]:
    """
    Coerce a probability-like value to [0, 1].

    Numbers and numeric strings (optionally ending in "%") are accepted;
    values in (1, 100] are treated as percentages. Anything negative, above
    100, non-finite or non-numeric yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        if cleaned.endswith("%"):
            cleaned = cleaned[:-1].strip()
        try:
            value = float(cleaned)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    if 1 < value <= 100:
        return value / 100
    if 0 <= value <= 1:
        return value
    return None


def _first_score(fields: Dict[str, Any], aliases: Iterable[str]) -> Optional[float]:
    for key in aliases:
        score = normalize_score(fields.get(key))
        if score is not None:
            return score
    return None


def label_for_score(score: float) -> str:
    if score >= AI_THRESHOLD:
        return "AI"
    if score <= HUMAN_THRESHOLD:
        return "Human"
    return "Mixed"


# ------------------------------------------------------------------
# Embedded JSON
# ------------------------------------------------------------------
def _balanced_object(text: str, start: int) -> Optional[str]:
    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_embedded_json(text: Any, marker: str = EMBEDDED_MARKER) -> Optional[Dict[str, Any]]:
    """Parse the JSON object that follows ``marker`` inside a diagnostic text."""
    if not isinstance(text, str):
        return None
    idx = text.find(marker)
    if idx == -1:
        return None
    brace = text.find("{", idx + len(marker))
    if brace == -1:
        return None
    fragment = _balanced_object(text, brace)
    if fragment is None:
        return None
    try:
        obj = json.loads(fragment)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


# ------------------------------------------------------------------
# Payload probing
# ------------------------------------------------------------------
def _body(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    result = payload.get("result")
    return result if isinstance(result, dict) else payload


def _text_segments(payload: Any) -> List[str]:
    content = _body(payload).get("content")
    if not isinstance(content, list):
        return []
    return [
        seg["text"]
        for seg in content
        if isinstance(seg, dict) and seg.get("type", "text") == "text" and isinstance(seg.get("text"), str)
    ]


def _error_message(err: Any) -> str:
    if isinstance(err, dict):
        for key in ("message", "detail", "error"):
            if err.get(key):
                return str(err[key])
        return json.dumps(err, ensure_ascii=False, default=str)
    return str(err)


def _from_rpc_error(payload: Any) -> Optional[_Extraction]:
    if isinstance(payload, dict) and payload.get("error") is not None:
        return _Extraction(error=_error_message(payload["error"]))
    return None


def _from_error_text(payload: Any) -> Optional[_Extraction]:
    texts = _text_segments(payload)
    for text in texts:
        if ERROR_TEXT in text.lower():
            return _Extraction(error=text.strip())
    if _body(payload).get("isError") is True:
        return _Extraction(error=" ".join(t.strip() for t in texts) or "tool call failed")
    return None


def _from_embedded_json(payload: Any) -> Optional[_Extraction]:
    for text in _text_segments(payload):
        obj = extract_embedded_json(text)
        if obj is not None:
            return _Extraction(fields=obj)
    return None


def _from_direct_fields(payload: Any) -> Optional[_Extraction]:
    body = _body(payload)
    return _Extraction(fields=body) if body else None


EXTRACTORS: Tuple[Callable[[Any], Optional[_Extraction]], ...] = (
    _from_rpc_error,
    _from_error_text,
    _from_embedded_json,
    _from_direct_fields,
)


# ------------------------------------------------------------------
# Resolution
# ------------------------------------------------------------------
def _bool_label(fields: Dict[str, Any]) -> Optional[str]:
    is_ai, is_human = fields.get("is_ai"), fields.get("is_human")
    if isinstance(is_ai, bool):
        return "AI" if is_ai else "Human"
    if isinstance(is_human, bool):
        return "Human" if is_human else "AI"
    return None


def _version(fields: Dict[str, Any]) -> str:
    for key in ("version", "model"):
        v = fields.get(key)
        if v not in (None, ""):
            return str(v)
    return FALLBACK_VERSION


def _resolve(fields: Dict[str, Any], raw: Any) -> Tuple[NormalizedResult, NormalizationKind]:
    ai = _first_score(fields, SCORE_ALIASES)
    human = _first_score(fields, HUMAN_ALIASES)
    if ai is None and human is not None:
        ai = 1 - human

    explicit = fields.get("label")
    label = explicit.strip() if isinstance(explicit, str) and explicit.strip() else None
    label = label or _bool_label(fields)
    if label is None and ai is not None:
        label = label_for_score(ai)

    parsed = {k: fields.get(k) for k in PARSED_KEYS}
    parsed["ai_probability"] = normalize_score(fields.get("ai_probability"))
    parsed["human_probability"] = normalize_score(fields.get("human_probability"))

    if ai is None and label is None:
        return (
            NormalizedResult(version=_version(fields), raw=raw, note=UNPARSEABLE_NOTE),
            NormalizationKind.UNPARSEABLE,
        )
    return (
        NormalizedResult(
            ai_score=ai if ai is not None else NEUTRAL_SCORE,
            label=label,
            version=_version(fields),
            raw=raw,
            parsed=parsed,
        ),
        NormalizationKind.OK,
    )


def normalize_payload(payload: Any) -> Tuple[NormalizedResult, NormalizationKind]:
    for extract in EXTRACTORS:
        found = extract(payload)
        if found is None:
            continue
        if found.error is not None:
            logger.info("Detector reported an error: %s", found.error)
            return (
                NormalizedResult(label=f"{DETECTOR_NAME} error: {found.error}", raw=payload),
                NormalizationKind.LOGICAL_ERROR,
            )
        return _resolve(found.fields, payload)
    return NormalizedResult(raw=payload, note=UNPARSEABLE_NOTE), NormalizationKind.UNPARSEABLE
