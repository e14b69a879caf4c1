"""
FastAPI dependencies: the pipeline context created in the app lifespan.
"""

import logging

from fastapi import HTTPException, Request

from src.services.comic_pipeline import ComicGenerationPipeline
from src.services.context import PipelineContext

logger = logging.getLogger(__name__)


def get_context(request: Request) -> PipelineContext:
    """Return the process-wide PipelineContext stored on app.state."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        logger.error("Pipeline context requested before application startup")
        raise HTTPException(status_code=503, detail="Service is starting up")
    return context


def get_pipeline(request: Request) -> ComicGenerationPipeline:
    return ComicGenerationPipeline(get_context(request))
