# app/services/validation.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.utils.image_utils import (
    ImageFormat,
    has_dimension_parser,
    read_dimensions,
    sniff_format,
)

DEFAULT_MIN_SIDE = 256


class RejectReason(str, Enum):
    UNKNOWN_IMAGE_TYPE = "UNKNOWN_IMAGE_TYPE"
    FORMAT_NOT_SUPPORTED = "FORMAT_NOT_SUPPORTED"
    CANNOT_READ_DIMENSIONS = "CANNOT_READ_DIMENSIONS"
    IMAGE_TOO_SMALL = "IMAGE_TOO_SMALL"


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    format: ImageFormat
    reason: Optional[RejectReason] = None
    width: Optional[int] = None
    height: Optional[int] = None
    min_side: int = DEFAULT_MIN_SIDE


def validate_image(data: bytes, min_side: int = DEFAULT_MIN_SIDE) -> ValidationResult:
    """
    Decide whether raw upload bytes are eligible for detection.

    Rules are checked in order and the first match wins: unknown format,
    format without a dimension parser (webp), unreadable dimensions, either
    side below ``min_side``. Never raises.
    """
    fmt = sniff_format(data)
    if fmt is ImageFormat.UNKNOWN:
        return ValidationResult(False, fmt, RejectReason.UNKNOWN_IMAGE_TYPE, min_side=min_side)
    if not has_dimension_parser(fmt):
        return ValidationResult(False, fmt, RejectReason.FORMAT_NOT_SUPPORTED, min_side=min_side)

    dims = read_dimensions(data, fmt)
    if dims is None:
        return ValidationResult(False, fmt, RejectReason.CANNOT_READ_DIMENSIONS, min_side=min_side)
    if dims.width < min_side or dims.height < min_side:
        return ValidationResult(
            False, fmt, RejectReason.IMAGE_TOO_SMALL,
            width=dims.width, height=dims.height, min_side=min_side,
        )
    return ValidationResult(True, fmt, width=dims.width, height=dims.height, min_side=min_side)


def rejection_label(result: ValidationResult) -> str:
    reason = result.reason
    if reason is RejectReason.IMAGE_TOO_SMALL:
        return (
            f"Image rejected ({reason.value}): {result.width}x{result.height}, "
            f"minimum is {result.min_side}x{result.min_side}"
        )
    if reason is RejectReason.FORMAT_NOT_SUPPORTED:
        return f"Image rejected ({reason.value}): {result.format.value} is not accepted, use PNG or JPEG"
    if reason is RejectReason.CANNOT_READ_DIMENSIONS:
        return f"Image rejected ({reason.value}): corrupt or truncated {result.format.value}"
    return f"Image rejected ({RejectReason.UNKNOWN_IMAGE_TYPE.value}): not a PNG, JPEG or WEBP image"
