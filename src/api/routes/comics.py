"""
Comic endpoints.

Thin layer over ComicGenerationPipeline and ComicStorage: translate requests
into pipeline calls and failures into ErrorResponse bodies.
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response
from starlette.requests import Request

from src.api.deps import get_context, get_pipeline
from src.api.rate_limit import GENERATE_RATE_LIMIT, limiter
from src.api.schemas import (
    EXPORT_MEDIA_TYPES,
    ComicGenerateRequest,
    ComicListResponse,
    ComicResponse,
    ComicSummary,
    DeleteResponse,
    ErrorResponse,
    StatisticsResponse,
    TopicValidateRequest,
    TopicValidateResponse,
)
from src.core.errors import ComicGenerationError, ComicNotFoundError
from src.core.models import ErrorResponse as CoreErrorResponse
from src.core.storage import coerce_export_format
from src.services.comic_pipeline import ComicGenerationPipeline
from src.services.context import PipelineContext


# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/comics", tags=["Comics"])

_STATUS_BY_CODE = {
    "INVALID_INPUT": 400,
    "INVALID_OPTIONS": 400,
    "NOT_FOUND": 404,
    "RENDERING_FAILED": 502,
    "STORAGE_ERROR": 500,
    "INTERNAL_ERROR": 500,
}

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def status_for_error(error: CoreErrorResponse) -> int:
    """HTTP status for a pipeline error: retryable -> 429, provider failures -> 502."""
    if error.error_code in _STATUS_BY_CODE:
        return _STATUS_BY_CODE[error.error_code]
    if error.should_retry:
        return 429
    return 502


def error_response(error: CoreErrorResponse) -> JSONResponse:
    headers = {}
    if error.retry_after is not None:
        headers["Retry-After"] = str(int(error.retry_after))
    return JSONResponse(
        status_code=status_for_error(error),
        content=ErrorResponse.from_core(error).model_dump(),
        headers=headers,
    )


@router.post("/generate", response_model=ComicResponse, responses=_ERROR_RESPONSES)
@limiter.limit(GENERATE_RATE_LIMIT)
async def generate_comic(
    request: Request,
    body: ComicGenerateRequest,
    pipeline: ComicGenerationPipeline = Depends(get_pipeline),
):
    """
    Generate a multi-panel math comic from a topic.

    Runs the whole pipeline synchronously: topic validation, prompt
    building, content generation, panel rendering and storage. On failure
    the body is an ErrorResponse; `should_retry` says whether trying again
    later can help and `retry_after` how long to wait.

    ## Example Topics:
    - "加法运算"
    - "分数的基本概念"
    - "triangle area"
    """
    options = body.options.model_dump() if body.options else None
    result = await pipeline.generate_comic(body.topic, options)
    if not result.success:
        return error_response(result.error)
    return ComicResponse.from_comic(result.comic)


@router.post("/validate", response_model=TopicValidateResponse)
async def validate_topic(
    body: TopicValidateRequest,
    pipeline: ComicGenerationPipeline = Depends(get_pipeline),
) -> TopicValidateResponse:
    """Check whether a topic would be accepted, with suggestions when it is not."""
    result = pipeline.validate_topic(body.topic)
    if not result.is_valid:
        return TopicValidateResponse(
            is_valid=False,
            error_message=result.error_message,
            suggestions=result.suggestions,
        )

    concept = pipeline.context.validator.parse_math_concept(body.topic)
    return TopicValidateResponse(
        is_valid=True,
        topic=concept.topic,
        keywords=list(concept.keywords),
        difficulty=concept.difficulty.value if concept.difficulty else None,
    )


@router.get("", response_model=ComicListResponse, responses=_ERROR_RESPONSES)
async def list_comics(context: PipelineContext = Depends(get_context)):
    """List stored comics, newest first."""
    try:
        entries = await context.storage.list_comics()
    except ComicGenerationError as e:
        return error_response(e.to_error_response())
    return ComicListResponse(
        comics=[ComicSummary.from_metadata(m) for m in entries],
        total=len(entries),
    )


@router.get("/statistics", response_model=StatisticsResponse, responses=_ERROR_RESPONSES)
async def get_statistics(context: PipelineContext = Depends(get_context)):
    """Aggregate counts and sizes across stored comics."""
    try:
        stats = await context.storage.get_statistics()
    except ComicGenerationError as e:
        return error_response(e.to_error_response())
    return StatisticsResponse.from_statistics(stats)


@router.get("/{comic_id}", response_model=ComicResponse, responses=_ERROR_RESPONSES)
async def get_comic(comic_id: str, context: PipelineContext = Depends(get_context)):
    try:
        comic = await context.storage.load_comic(comic_id)
    except ComicGenerationError as e:
        return error_response(e.to_error_response())
    if comic is None:
        return error_response(ComicNotFoundError(comic_id).to_error_response())
    return ComicResponse.from_comic(comic)


@router.delete("/{comic_id}", response_model=DeleteResponse, responses=_ERROR_RESPONSES)
async def delete_comic(comic_id: str, context: PipelineContext = Depends(get_context)):
    try:
        deleted = await context.storage.delete_comic(comic_id)
    except ComicGenerationError as e:
        return error_response(e.to_error_response())
    if not deleted:
        return error_response(ComicNotFoundError(comic_id).to_error_response())
    return DeleteResponse(id=comic_id, deleted=True)


@router.get("/{comic_id}/export", responses=_ERROR_RESPONSES)
async def export_comic(
    comic_id: str,
    format: str = Query("json", description="Export format: json, pdf or zip"),
    context: PipelineContext = Depends(get_context),
):
    """Download a stored comic as JSON, PDF or a ZIP bundle with the panel images."""
    try:
        export_format = coerce_export_format(format)
    except ValueError as e:
        return error_response(CoreErrorResponse(
            user_message=str(e),
            error_code="INVALID_INPUT",
            resolution_steps=["Use format=json, format=pdf or format=zip"],
        ))

    try:
        data = await context.storage.export_comic(comic_id, export_format)
    except ComicGenerationError as e:
        return error_response(e.to_error_response())

    return Response(
        content=data,
        media_type=EXPORT_MEDIA_TYPES[export_format],
        headers={
            "Content-Disposition": f'attachment; filename="comic_{comic_id}.{export_format.value}"'
        },
    )
