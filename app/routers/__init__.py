# app/routers/__init__.py

from .detect  import router as detect_router
from .uploads import router as uploads_router

__all__ = ["detect_router", "uploads_router"]
