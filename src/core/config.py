"""
Configuration settings for the Math Comic Generator.
"""

from dataclasses import dataclass, field
import os

# Default models
DEFAULT_IMAGE_MODEL = "google/gemini-2.5-flash-image"
DEFAULT_CONTENT_MODEL = "google/gemini-2.5-flash"  # Supports structured outputs

# Panel bounds shared by options processing, prompt building and the API schemas
PANEL_COUNT_MIN = 3
PANEL_COUNT_MAX = 6
DEFAULT_PANEL_COUNT = 4

SUPPORTED_LANGUAGES = {
    "zh": "Chinese",
    "en": "English",
}
DEFAULT_LANGUAGE = "zh"

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class LLMConfig:
    """Configuration for the OpenRouter content API."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = DEFAULT_CONTENT_MODEL
    optimization_model: str = "anthropic/claude-3-haiku"  # Cheap rewrite pass
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout: float = 60.0

    # Retry policy for comic content generation
    max_attempts: int = 3
    backoff_base: float = 2.0
    max_retry_delay: float = 60.0

    optimize_prompts: bool = field(default_factory=lambda: _env_bool("COMIC_OPTIMIZE_PROMPTS", True))

    def validate(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key)


@dataclass
class StorageConfig:
    """Where comics, metadata and panel images live on disk."""

    base_path: str = field(default_factory=lambda: os.getenv("COMIC_STORAGE_PATH", "comic_data"))
    public_base_url: str = field(
        default_factory=lambda: os.getenv("COMIC_PUBLIC_BASE_URL", "/api/v1/images")
    )

    @property
    def images_dir(self) -> str:
        return os.path.join(self.base_path, "images")


@dataclass
class ResourceConfig:
    """Process-wide caps on concurrent work."""

    max_concurrent_api_calls: int = field(
        default_factory=lambda: _env_int("COMIC_MAX_CONCURRENT_API_CALLS", 5)
    )
    max_concurrent_pipelines: int = field(
        default_factory=lambda: _env_int("COMIC_MAX_CONCURRENT_PIPELINES", 3)
    )
    acquire_timeout: float = 1.0


@dataclass
class EventLogConfig:
    """Pipeline event logging settings."""

    queue_size: int = 1000
    logger_name: str = "src.pipeline.events"


@dataclass
class CloudWatchConfig:
    """Opt-in CloudWatch log shipping (needs the watchtower extra)."""

    enabled: bool = field(default_factory=lambda: _env_bool("CLOUDWATCH_ENABLED", False))
    log_group: str = field(
        default_factory=lambda: os.getenv("CLOUDWATCH_LOG_GROUP", "/app/math-comic-generator")
    )
    log_stream: str | None = field(default_factory=lambda: os.getenv("CLOUDWATCH_LOG_STREAM"))
    send_interval: int = 10
    max_batch_count: int = 100


@dataclass
class AppConfig:
    """All settings needed to build a pipeline context."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    resources: ResourceConfig = field(default_factory=ResourceConfig)
    events: EventLogConfig = field(default_factory=EventLogConfig)
    cloudwatch: CloudWatchConfig = field(default_factory=CloudWatchConfig)
