"""
Panel image endpoint.
"""

import os

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from src.api.deps import get_context
from src.services.context import PipelineContext

router = APIRouter(prefix="/images", tags=["Images"])


@router.get("/{file_name}")
async def get_image(file_name: str, context: PipelineContext = Depends(get_context)) -> FileResponse:
    """Serve a rendered panel image by file name."""
    try:
        path = context.image_renderer.get_image_path(file_name)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid image file name")

    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Image not found")

    return FileResponse(path, media_type="image/png")
