"""Root-level test fixtures."""

import io

import pytest
from PIL import Image

from src.core.config import LLMConfig, StorageConfig, ResourceConfig
from src.core.models import (
    AgeGroup,
    ComicContent,
    DifficultyLevel,
    GenerationOptions,
    MathConcept,
    VisualStyle,
)
from tests.helpers import make_comic, make_panels


# Ensure no real API keys or deployment settings leak into tests
@pytest.fixture(autouse=True)
def _clear_env_keys(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("CLOUDWATCH_ENABLED", raising=False)
    monkeypatch.delenv("COMIC_STORAGE_PATH", raising=False)


@pytest.fixture
def llm_config():
    return LLMConfig(api_key="test-key-123", backoff_base=0.0, optimize_prompts=False)


@pytest.fixture
def storage_config(tmp_path):
    return StorageConfig(base_path=str(tmp_path / "data"), public_base_url="/api/v1/images")


@pytest.fixture
def resource_config():
    return ResourceConfig(max_concurrent_api_calls=4, max_concurrent_pipelines=2, acquire_timeout=0.05)


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (8, 6), color=(200, 120, 40)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_concept():
    return MathConcept(
        topic="加法运算",
        keywords=("加法", "运算"),
        difficulty=DifficultyLevel.BEGINNER,
    )


@pytest.fixture
def sample_options():
    return GenerationOptions(
        age_group=AgeGroup.CHILD,
        panel_count=4,
        style=VisualStyle.CARTOON,
        language="zh",
    )


@pytest.fixture
def sample_content():
    return ComicContent(title="小兔子学加法", panels=make_panels(4))


@pytest.fixture
def sample_comic():
    return make_comic()
