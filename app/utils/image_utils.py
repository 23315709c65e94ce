# app/utils/image_utils.py
"""
Byte-level image inspection.

Nothing here decodes pixels: the format is sniffed from fixed magic
signatures and the dimensions are read straight out of the PNG IHDR chunk or
the first JPEG Start-Of-Frame segment. Filenames and declared content types
are never consulted.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional


class ImageFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ImageDimensions:
    width: int
    height: int
    format: ImageFormat


PNG_MAGIC = b"\x89PNG"
JPEG_SOI = b"\xff\xd8"
RIFF_MAGIC = b"RIFF"
WEBP_MAGIC = b"WEBP"
MIN_SNIFF_BYTES = 12

_EXTENSIONS = {
    ImageFormat.PNG: ".png",
    ImageFormat.JPEG: ".jpg",
    ImageFormat.WEBP: ".webp",
}

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}

# JPEG markers
_SOF_MARKERS = (0xC0, 0xC2)           # baseline, progressive
_STANDALONE = {0x01, 0xD8} | set(range(0xD0, 0xD8))   # TEM, SOI, RST0-7
_EOI, _SOS = 0xD9, 0xDA


def sniff_format(data: bytes) -> ImageFormat:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return ImageFormat.UNKNOWN
    head = bytes(data[:MIN_SNIFF_BYTES])
    if len(head) < MIN_SNIFF_BYTES:
        return ImageFormat.UNKNOWN
    if head.startswith(PNG_MAGIC):
        return ImageFormat.PNG
    if head.startswith(JPEG_SOI):
        return ImageFormat.JPEG
    if head[:4] == RIFF_MAGIC and head[8:12] == WEBP_MAGIC:
        return ImageFormat.WEBP
    return ImageFormat.UNKNOWN


def extension_for(fmt: ImageFormat) -> Optional[str]:
    return _EXTENSIONS.get(fmt)


def media_type_for_suffix(suffix: str) -> str:
    return _MEDIA_TYPES.get(suffix.lower(), "application/octet-stream")


def _png_dimensions(data: bytes) -> Optional[ImageDimensions]:
    if len(data) <= 24:
        return None
    width, height = struct.unpack(">II", data[16:24])
    return ImageDimensions(width, height, ImageFormat.PNG)


def _jpeg_dimensions(data: bytes) -> Optional[ImageDimensions]:
    """
    Walk the marker segments after SOI until the first SOF0/SOF2.

    Returns None for anything malformed: a segment running past the end of
    the buffer, a missing 0xFF where a marker should start, or reaching the
    scan data (SOS) or EOI without seeing a frame header.
    """
    n = len(data)
    i = 2
    while i < n:
        if data[i] != 0xFF:
            return None
        # fill bytes may pad before a marker
        while i < n and data[i] == 0xFF:
            i += 1
        if i >= n:
            return None
        marker = data[i]
        i += 1
        if marker in _STANDALONE:
            continue
        if marker in (_EOI, _SOS):
            return None
        if i + 2 > n:
            return None
        (length,) = struct.unpack(">H", data[i:i + 2])
        if length < 2 or i + length > n:
            return None
        if marker in _SOF_MARKERS:
            # body: precision(1) height(2) width(2) ...
            if length < 7:
                return None
            height, width = struct.unpack(">HH", data[i + 3:i + 7])
            return ImageDimensions(width, height, ImageFormat.JPEG)
        i += length
    return None


# Formats without an entry here can be sniffed but not size-checked.
DIMENSION_PARSERS: Dict[ImageFormat, Callable[[bytes], Optional[ImageDimensions]]] = {
    ImageFormat.PNG: _png_dimensions,
    ImageFormat.JPEG: _jpeg_dimensions,
}


def has_dimension_parser(fmt: ImageFormat) -> bool:
    return fmt in DIMENSION_PARSERS


def read_dimensions(data: bytes, fmt: Optional[ImageFormat] = None) -> Optional[ImageDimensions]:
    """Parse width/height for a sniffed format, or None if unsupported/corrupt."""
    data = bytes(data)
    fmt = fmt or sniff_format(data)
    parser = DIMENSION_PARSERS.get(fmt)
    if parser is None:
        return None
    return parser(data)
