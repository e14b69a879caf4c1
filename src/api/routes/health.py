"""
Health check endpoint.
"""

from fastapi import APIRouter, Depends

from src.api.deps import get_context
from src.api.schemas import HealthResponse
from src.services.context import PipelineContext

router = APIRouter(tags=["Health"])

API_VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check(context: PipelineContext = Depends(get_context)) -> HealthResponse:
    """
    Check API health, configuration and current load.
    """
    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        openrouter_configured=context.config.llm.validate(),
        storage_path=context.config.storage.base_path,
        resources=context.resources.get_status(),
        events=context.events.get_status(),
    )
