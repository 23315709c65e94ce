# app/core/config.py

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

from dotenv import load_dotenv
# load .env from project root

DOTENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(dotenv_path=DOTENV_PATH, override=False)

def _get_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")

def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default

def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default

def _get_list(name: str, default: str) -> List[str]:
    return [o.strip() for o in os.getenv(name, default).split(",") if o.strip()]

ENVIRONMENT     = os.getenv("ENVIRONMENT", "production").lower()
DEBUG           = _get_bool("DEBUG", ENVIRONMENT != "production")
TESTING         = _get_bool("TESTING")
PROJECT_NAME    = os.getenv("PROJECT_NAME", "AI Image Detector")
LOG_LEVEL       = os.getenv("LOG_LEVEL", "info").upper()
LOG_FILE        = os.getenv("LOG_FILE", "logs.txt")
ALLOWED_ORIGINS = _get_list("ALLOWED_ORIGINS", "*")

# ——————————————————————————————————————————
# Winston AI detector
# ——————————————————————————————————————————
WINSTON_MCP_URL  = "https://api.gowinston.ai/mcp/v1"
WINSTON_REST_URL = "https://api.gowinston.ai/v2/image-detection"
TRANSPORTS       = ("rpc", "rest")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed explicitly."""

    detector_api_key: str = ""
    detector_transport: str = "rpc"
    detector_rpc_url: str = WINSTON_MCP_URL
    detector_rest_url: str = WINSTON_REST_URL
    detector_timeout: float = 20.0
    self_fetch_timeout: float = 15.0
    upload_dir: Path = Path("/tmp/uploads")
    public_scheme: str = "https"
    min_image_side: int = 256
    max_upload_bytes: int = 20 * 1024 * 1024
    retention_seconds: int = 3600
    sweep_interval_seconds: float = 300.0

    @property
    def has_credentials(self) -> bool:
        return bool(self.detector_api_key)


def load_settings() -> Settings:
    transport = os.getenv("WINSTON_TRANSPORT", "rpc").strip().lower()
    if transport not in TRANSPORTS:
        raise RuntimeError(
            f"WINSTON_TRANSPORT must be one of {', '.join(TRANSPORTS)} (got {transport!r})"
        )
    return Settings(
        detector_api_key=os.getenv("WINSTONAI_API_KEY", "").strip(),
        detector_transport=transport,
        detector_rpc_url=os.getenv("WINSTON_MCP_URL", WINSTON_MCP_URL),
        detector_rest_url=os.getenv("WINSTON_REST_URL", WINSTON_REST_URL),
        detector_timeout=_get_float("DETECTOR_TIMEOUT", 20.0),
        self_fetch_timeout=_get_float("SELF_FETCH_TIMEOUT", 15.0),
        upload_dir=Path(os.getenv("UPLOAD_DIR", "/tmp/uploads")),
        public_scheme=os.getenv("PUBLIC_SCHEME", "https").strip().lower() or "https",
        min_image_side=_get_int("MIN_IMAGE_SIDE", 256),
        max_upload_bytes=_get_int("MAX_UPLOAD_BYTES", 20 * 1024 * 1024),
        retention_seconds=_get_int("UPLOAD_RETENTION_SECONDS", 3600),
        sweep_interval_seconds=_get_float("UPLOAD_SWEEP_INTERVAL", 300.0),
    )


__all__ = [
    # core
    "ENVIRONMENT", "DEBUG", "TESTING", "PROJECT_NAME",
    # logging / http
    "LOG_LEVEL", "LOG_FILE", "ALLOWED_ORIGINS",
    # detector
    "WINSTON_MCP_URL", "WINSTON_REST_URL", "TRANSPORTS",
    "Settings", "load_settings",
]
