# app/services/asset_store.py
"""
Append-only store for validated uploads plus the public URL they are served at.

Files are named ``<epoch-ms>-<32 hex>.<ext>``; the millisecond prefix doubles
as the creation time for the retention sweep, the random suffix keeps
concurrent requests from colliding.
"""
from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Mapping, Optional

from app.utils.image_utils import ImageFormat, extension_for

logger = logging.getLogger(__name__)

UPLOADS_PREFIX = "/uploads"
_NAME_RE = re.compile(r"^(\d{13})-([0-9a-f]{32})(\.[a-z0-9]{1,5})$")
_HINT_EXT_RE = re.compile(r"^\.[a-z0-9]{1,5}$")


class PublishError(Exception):
    """Storage write failed; no caller-correctable action exists."""


@dataclass(frozen=True)
class PublishedAsset:
    filename: str
    storage_path: Path
    public_url: str
    created_at: datetime


def _first_header_value(value: Optional[str]) -> Optional[str]:
    # proxies chain values: "https, http"
    if not value:
        return None
    first = value.split(",")[0].strip()
    return first or None


def build_public_url(
    headers: Mapping[str, str],
    filename: str,
    *,
    default_scheme: str = "https",
    fallback_host: Optional[str] = None,
) -> str:
    """
    Build the externally reachable URL for a stored file.

    Scheme comes from X-Forwarded-Proto (else ``default_scheme``), host from
    X-Forwarded-Host, then Host, then ``fallback_host``.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    scheme = _first_header_value(lowered.get("x-forwarded-proto")) or default_scheme
    host = (
        _first_header_value(lowered.get("x-forwarded-host"))
        or _first_header_value(lowered.get("host"))
        or fallback_host
    )
    if not host:
        raise ValueError("Cannot derive public URL: no host header")
    return f"{scheme.lower()}://{host}{UPLOADS_PREFIX}/{filename}"


class AssetStore:
    def __init__(self, root: Path, *, retention_seconds: int = 0):
        self.root = Path(root)
        self.retention_seconds = retention_seconds

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    # ---------- Naming ----------
    @staticmethod
    def generate_name(fmt: ImageFormat, filename_hint: Optional[str] = None) -> str:
        ext = extension_for(fmt)
        if ext is None and filename_hint:
            # untrusted hint only used when the sniffed format has no extension
            suffix = PurePath(filename_hint).suffix.lower()
            ext = suffix if _HINT_EXT_RE.match(suffix) else None
        ext = ext or ".bin"
        return f"{int(time.time() * 1000):013d}-{secrets.token_hex(16)}{ext}"

    def resolve(self, name: str) -> Optional[Path]:
        """Map a public name back to a stored file; None for anything the store could not have produced."""
        if not _NAME_RE.match(name or ""):
            return None
        path = self.root / name
        return path if path.is_file() else None

    # ---------- Writing ----------
    def _write(self, name: str, data: bytes) -> Path:
        self.ensure_root()
        path = self.root / name
        # "xb": never overwrite an existing asset
        with open(path, "xb") as fh:
            fh.write(data)
        return path

    async def publish(
        self,
        data: bytes,
        fmt: ImageFormat,
        headers: Mapping[str, str],
        *,
        default_scheme: str = "https",
        fallback_host: Optional[str] = None,
        filename_hint: Optional[str] = None,
    ) -> PublishedAsset:
        name = self.generate_name(fmt, filename_hint)
        try:
            public_url = build_public_url(
                headers, name, default_scheme=default_scheme, fallback_host=fallback_host
            )
            path = await asyncio.to_thread(self._write, name, data)
        except (OSError, ValueError) as e:
            raise PublishError(f"Could not publish upload: {e}") from e
        logger.info("Published %s (%d bytes) at %s", name, len(data), public_url)
        return PublishedAsset(
            filename=name,
            storage_path=path,
            public_url=public_url,
            created_at=datetime.now(timezone.utc),
        )

    # ---------- Retention ----------
    def purge_expired(self, now: Optional[float] = None) -> int:
        """
        Delete assets older than ``retention_seconds``. Returns the number removed.
        """
        if self.retention_seconds <= 0 or not self.root.is_dir():
            return 0
        cutoff_ms = ((now if now is not None else time.time()) - self.retention_seconds) * 1000
        removed = 0
        for path in self.root.iterdir():
            m = _NAME_RE.match(path.name)
            if not m or int(m.group(1)) >= cutoff_ms:
                continue
            try:
                path.unlink()
                removed += 1
            except OSError:
                logger.warning("Failed to delete expired upload %s", path)
        if removed:
            logger.info("Retention sweep removed %d upload(s) from %s", removed, self.root)
        return removed


async def retention_sweeper(store: AssetStore, interval_seconds: float = 300.0) -> None:
    """
    Periodically purge expired uploads. Runs until cancelled.
    """
    logger.info(
        "Upload retention sweeper running every %.0fs (ttl=%ss)",
        interval_seconds, store.retention_seconds,
    )
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(store.purge_expired)
        except Exception:
            logger.exception("Retention sweep failed")
