# app/dependencies.py

from fastapi import Depends, Request

from app.core.config import Settings
from app.services.asset_store import AssetStore
from app.services.detector_client import BaseDetectorClient, get_detector_client
from app.services.pipeline import DetectionPipeline
from app.services.self_fetch import SelfFetchVerifier


# --- configuration ---------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# --- collaborators ---------------------------------------------------

def get_asset_store(settings: Settings = Depends(get_settings)) -> AssetStore:
    return AssetStore(settings.upload_dir, retention_seconds=settings.retention_seconds)


def get_detector(request: Request, settings: Settings = Depends(get_settings)) -> BaseDetectorClient:
    # one client per app so RPC request ids keep increasing
    client = getattr(request.app.state, "detector", None)
    if client is None:
        client = get_detector_client(settings)
        request.app.state.detector = client
    return client


def get_self_fetch_verifier(settings: Settings = Depends(get_settings)) -> SelfFetchVerifier:
    return SelfFetchVerifier(timeout=settings.self_fetch_timeout)


def get_pipeline(
    settings: Settings = Depends(get_settings),
    store: AssetStore = Depends(get_asset_store),
    client: BaseDetectorClient = Depends(get_detector),
    verifier: SelfFetchVerifier = Depends(get_self_fetch_verifier),
) -> DetectionPipeline:
    return DetectionPipeline(settings, store, client, verifier)
