# app/main.py

import os
import time
import logging
import asyncio
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request, HTTPException, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app.core.config import ALLOWED_ORIGINS, LOG_FILE, LOG_LEVEL, PROJECT_NAME, TESTING, load_settings
from app.schemas import HealthCheck, envelope_content
from app.services.asset_store import AssetStore, retention_sweeper
from app.services.pipeline import input_invalid, internal_error, render_envelope

# ─── Routers ──────────────────────────────────────────────────────────────────
from app.routers.detect import router as detect_router
from app.routers.uploads import router as uploads_router


# ─── Logging Setup ─────────────────────────────────────────────────────────────
log_path = Path(LOG_FILE)
log_path.parent.mkdir(parents=True, exist_ok=True)
formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
console_handler = logging.StreamHandler();  console_handler.setFormatter(formatter)
file_handler    = RotatingFileHandler(str(log_path), maxBytes=5_000_000, backupCount=3)
file_handler.setFormatter(formatter)
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), handlers=[console_handler, file_handler])
logger = logging.getLogger(__name__)

# ─── FastAPI App ───────────────────────────────────────────────────────────────
app = FastAPI(
    title=f"{PROJECT_NAME} API",
    version=os.getenv("API_VERSION", "1.0.0"),
)
app.state.settings = load_settings()

# ─── Middlewares ───────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Request-logging Middleware ───────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    ip = request.headers.get("x-forwarded-for", request.client.host if request.client else "-")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Error on {request.method} {request.url.path}: {e}", exc_info=True)
        raise
    ms = (time.time() - start) * 1000
    logger.info("%s %s • ip=%s • %d • %.1fms",
                request.method, request.url.path, ip, response.status_code, ms)
    response.headers["X-Process-Time"] = f"{ms/1000:.3f}"
    return response

# ─── Startup / Shutdown ────────────────────────────────────────────────────────
@app.on_event("startup")
async def on_startup():
    settings = app.state.settings
    app.state.start_time = time.time()
    store = AssetStore(settings.upload_dir, retention_seconds=settings.retention_seconds)
    store.ensure_root()
    if not settings.has_credentials:
        logger.warning("WINSTONAI_API_KEY is not set; /detect-image will answer MISSING_CREDENTIAL")
    app.state.sweeper = None
    if not TESTING and settings.retention_seconds > 0:
        app.state.sweeper = asyncio.create_task(
            retention_sweeper(store, interval_seconds=settings.sweep_interval_seconds)
        )
    logger.info("Backend ready (transport=%s, uploads=%s)", settings.detector_transport, settings.upload_dir)

@app.on_event("shutdown")
async def on_shutdown():
    task = getattr(app.state, "sweeper", None)
    if task is not None:
        task.cancel()

# ─── Health Endpoints ─────────────────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return PlainTextResponse(f"{PROJECT_NAME} backend running")

@app.get("/healthz", response_model=HealthCheck)
async def healthz():
    return HealthCheck(status="ok")

# ─── Exception Handlers ───────────────────────────────────────────────────────
@app.exception_handler(HTTPException)
async def http_exc_handler(request: Request, exc: HTTPException):
    logger.warning(f"HTTPException {exc.detail} on {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail,
                 "timestamp": datetime.now(timezone.utc).isoformat(),
                 "path": request.url.path},
    )

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    # a wrongly typed upload field is a caller error answered with the envelope
    if request.url.path == "/detect-image":
        logger.warning(f"Invalid upload on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=envelope_content(render_envelope(input_invalid("No image uploaded"))),
        )
    return await request_validation_exception_handler(request, exc)

@app.exception_handler(Exception)
async def exc_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=envelope_content(render_envelope(internal_error())),
    )

# ─── Include Routers ──────────────────────────────────────────────────────────
app.include_router(detect_router,  tags=["Detection"])
app.include_router(uploads_router, tags=["Uploads"])

# ─── Run the App ──────────────────────────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 10000)),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        reload=os.getenv("DEBUG", "false").lower() == "true",
    )
