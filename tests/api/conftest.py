"""API-specific test fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from httpx import AsyncClient, ASGITransport

from src.api.app import app
from src.api.rate_limit import limiter
from src.core.config import AppConfig
from src.core.image_generator import GeneratedImage, ImageConfig
from src.core.llm_connector import LLMResponse
from src.services.context import PipelineContext
from tests.helpers import comic_json


@pytest.fixture
async def api_context(llm_config, storage_config, resource_config, png_bytes):
    """Pipeline context with mocked content and image providers."""
    config = AppConfig(llm=llm_config, storage=storage_config, resources=resource_config)
    context = PipelineContext.create(config, ImageConfig(api_key="test-key"))

    await context.image_renderer.generator.close()
    generator = MagicMock()
    generator.generate = AsyncMock(return_value=GeneratedImage(success=True, image_data=png_bytes))
    generator.close = AsyncMock()
    context.image_renderer.generator = generator

    context.content_client.llm._call_llm = AsyncMock(
        return_value=LLMResponse(content=comic_json(4), tokens_used=100, success=True)
    )
    yield context
    await context.aclose()


@pytest.fixture
async def async_client(api_context):
    """Async test client for FastAPI."""
    # ASGITransport does not run the lifespan, so install the context directly
    app.state.context = api_context
    limiter.enabled = False
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        limiter.enabled = True
        app.state.context = None
