"""
Pydantic schemas for API request/response models.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, Field, model_validator

from src.core.config import (
    DEFAULT_LANGUAGE,
    DEFAULT_PANEL_COUNT,
    PANEL_COUNT_MAX,
    PANEL_COUNT_MIN,
    SUPPORTED_LANGUAGES,
)
from src.core.models import (
    AgeGroup,
    ComicMetadata,
    ComicStatistics,
    ErrorResponse as CoreErrorResponse,
    ExportFormat,
    MultiPanelComic,
    VisualStyle,
)


class GenerationOptionsSchema(BaseModel):
    """Options for a single comic."""

    age_group: AgeGroup = Field(AgeGroup.CHILD, description="Target reader age group")
    panel_count: int = Field(
        DEFAULT_PANEL_COUNT, ge=PANEL_COUNT_MIN, le=PANEL_COUNT_MAX,
        description="Number of comic panels",
    )
    style: VisualStyle = Field(VisualStyle.CARTOON, description="Illustration style")
    language: str = Field(DEFAULT_LANGUAGE, description="Language code for dialogue and narration")
    include_narration: bool = Field(True, description="Add a narration caption to every panel")

    @model_validator(mode="after")
    def normalize_language(self):
        key = self.language.lower().strip()
        name_to_code = {v.lower(): k for k, v in SUPPORTED_LANGUAGES.items()}
        code = key if key in SUPPORTED_LANGUAGES else name_to_code.get(key)
        if code is None:
            raise ValueError(
                f"Unsupported language '{self.language}'. "
                f"Supported languages: {', '.join(SUPPORTED_LANGUAGES)}"
            )
        self.language = code
        return self


class ComicGenerateRequest(BaseModel):
    """Request schema for comic generation."""

    topic: str = Field(..., min_length=1, max_length=500, description="Math topic, e.g. '加法运算'")
    options: Optional[GenerationOptionsSchema] = Field(None, description="Generation options (defaults if omitted)")

    model_config = {
        "json_schema_extra": {
            "example": {
                "topic": "加法运算",
                "options": {
                    "age_group": "child",
                    "panel_count": 4,
                    "style": "cartoon",
                    "language": "zh",
                },
            }
        }
    }


class TopicValidateRequest(BaseModel):
    topic: str = Field(..., max_length=500)


class TopicValidateResponse(BaseModel):
    is_valid: bool
    error_message: str = ""
    suggestions: List[str] = Field(default_factory=list)
    topic: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    difficulty: Optional[str] = None


class PanelResponse(BaseModel):
    order: int
    image_description: str
    dialogue: List[str]
    narration: Optional[str] = None
    image_file: str
    image_url: str


class ComicResponse(BaseModel):
    """A generated comic."""

    id: str
    title: str
    math_concept: str
    keywords: List[str]
    created_at: datetime
    options: GenerationOptionsSchema
    panels: List[PanelResponse]

    @classmethod
    def from_comic(cls, comic: MultiPanelComic) -> "ComicResponse":
        return cls(
            id=comic.id,
            title=comic.title,
            math_concept=comic.math_concept,
            keywords=comic.keywords,
            created_at=comic.created_at,
            options=GenerationOptionsSchema(**comic.options.to_dict()),
            panels=[
                PanelResponse(
                    order=p.order,
                    image_description=p.content.image_description,
                    dialogue=p.content.dialogue,
                    narration=p.content.narration,
                    image_file=p.image_file,
                    image_url=p.image_url,
                )
                for p in comic.panels
            ],
        )


class ComicSummary(BaseModel):
    """Listing entry built from the metadata index."""

    id: str
    title: str
    created_at: datetime
    panel_count: int
    math_concept: str
    age_group: str
    style: str
    file_size: int

    @classmethod
    def from_metadata(cls, metadata: ComicMetadata) -> "ComicSummary":
        return cls(**metadata.to_dict())


class ComicListResponse(BaseModel):
    comics: List[ComicSummary]
    total: int


class StatisticsResponse(BaseModel):
    total_comics: int
    comics_this_week: int
    comics_this_month: int
    total_panels: int
    comics_by_age_group: Dict[str, int]
    comics_by_style: Dict[str, int]
    total_storage_size: int
    most_popular_concepts: List[str]

    @classmethod
    def from_statistics(cls, stats: ComicStatistics) -> "StatisticsResponse":
        return cls(**asdict(stats))


class DeleteResponse(BaseModel):
    id: str
    deleted: bool


class ErrorResponse(BaseModel):
    """Error body for every failed request."""

    error_code: str
    user_message: str
    should_retry: bool = False
    retry_after: Optional[float] = None
    resolution_steps: List[str] = Field(default_factory=list)

    @classmethod
    def from_core(cls, error: CoreErrorResponse) -> "ErrorResponse":
        return cls(**error.to_dict())


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    openrouter_configured: bool
    storage_path: str
    resources: Dict[str, int]
    events: Dict[str, int]


EXPORT_MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.PDF: "application/pdf",
    ExportFormat.ZIP: "application/zip",
}
