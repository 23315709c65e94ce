# app/routers/detect.py

from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse

from app.dependencies import get_pipeline
from app.schemas import DetectionResponse, envelope_content
from app.services.pipeline import DetectionPipeline, input_invalid, render_envelope


router = APIRouter()


@router.post("/detect-image", response_model=DetectionResponse)
async def detect_image(
    request: Request,
    image: Optional[UploadFile] = File(None),
    pipeline: DetectionPipeline = Depends(get_pipeline),
):
    # A missing field is a caller error but still answered with the envelope.
    if image is None:
        outcome = input_invalid("No image uploaded")
    else:
        # one byte past the cap is enough for the pipeline to reject it
        data = await image.read(pipeline.settings.max_upload_bytes + 1)
        outcome = await pipeline.run_detached(
            data,
            filename=image.filename,
            headers=request.headers,
            fallback_host=request.url.netloc,
        )
    return JSONResponse(
        status_code=outcome.http_status,
        content=envelope_content(render_envelope(outcome)),
    )
