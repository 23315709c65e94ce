# app/routers/uploads.py

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from app.dependencies import get_asset_store
from app.services.asset_store import UPLOADS_PREFIX, AssetStore
from app.utils.image_utils import media_type_for_suffix

router = APIRouter()

CACHE_CONTROL = "public, max-age=300"


@router.get(f"{UPLOADS_PREFIX}/{{name}}")
async def get_upload(name: str, store: AssetStore = Depends(get_asset_store)):
    path = store.resolve(name)
    if path is None:
        raise HTTPException(status_code=404, detail="Upload not found")
    return FileResponse(
        path,
        media_type=media_type_for_suffix(path.suffix),
        headers={
            "Cache-Control": CACHE_CONTROL,
            "X-Content-Type-Options": "nosniff",
        },
    )
