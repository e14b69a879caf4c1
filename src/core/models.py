"""
Domain models shared by every stage of the comic pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from src.core.config import DEFAULT_LANGUAGE, DEFAULT_PANEL_COUNT


class AgeGroup(str, Enum):
    CHILD = "child"
    TEEN = "teen"
    ADULT = "adult"


class VisualStyle(str, Enum):
    CARTOON = "cartoon"
    REALISTIC = "realistic"
    MINIMALIST = "minimalist"
    COLORFUL = "colorful"


class DifficultyLevel(str, Enum):
    BEGINNER = "beginner"
    ELEMENTARY = "elementary"
    ADVANCED = "advanced"


class ExportFormat(str, Enum):
    JSON = "json"
    PDF = "pdf"
    ZIP = "zip"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MathConcept:
    """A validated math topic extracted from free-text input."""
    topic: str
    keywords: tuple[str, ...] = ()
    difficulty: Optional[DifficultyLevel] = None


@dataclass(frozen=True)
class GenerationOptions:
    """Normalized options for one comic. Adjusted copies come from dataclasses.replace."""
    age_group: AgeGroup = AgeGroup.CHILD
    panel_count: int = DEFAULT_PANEL_COUNT
    style: VisualStyle = VisualStyle.CARTOON
    language: str = DEFAULT_LANGUAGE
    include_narration: bool = True

    def to_dict(self) -> dict:
        return {
            "age_group": self.age_group.value,
            "panel_count": self.panel_count,
            "style": self.style.value,
            "language": self.language,
            "include_narration": self.include_narration,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GenerationOptions":
        return cls(
            age_group=AgeGroup(data["age_group"]),
            panel_count=int(data["panel_count"]),
            style=VisualStyle(data["style"]),
            language=data["language"],
            include_narration=bool(data.get("include_narration", True)),
        )


@dataclass
class ValidationResult:
    """Outcome of a validation step. Suggestions are only filled on failure."""
    is_valid: bool
    error_message: str = ""
    suggestions: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, message: str, suggestions: Optional[list[str]] = None) -> "ValidationResult":
        return cls(is_valid=False, error_message=message, suggestions=list(suggestions or []))


@dataclass
class PanelContent:
    """Text content for one panel, as returned by the content API."""
    image_description: str
    dialogue: list[str] = field(default_factory=list)
    narration: Optional[str] = None

    def __post_init__(self):
        # Blank narration means "no narration"
        if self.narration is not None and not self.narration.strip():
            self.narration = None

    def has_content(self) -> bool:
        return bool(self.image_description.strip() or self.dialogue or (self.narration or "").strip())

    def to_dict(self) -> dict:
        return {
            "image_description": self.image_description,
            "dialogue": list(self.dialogue),
            "narration": self.narration,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PanelContent":
        return cls(
            image_description=data.get("image_description", ""),
            dialogue=list(data.get("dialogue") or []),
            narration=data.get("narration"),
        )


@dataclass
class ComicContent:
    title: str
    panels: list[PanelContent] = field(default_factory=list)


@dataclass
class PromptGenerationResponse:
    """System/user prompt pair ready to send to the content API."""
    math_concept: MathConcept
    system_prompt: str
    user_prompt: str
    options: GenerationOptions
    id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    suggestions: list[str] = field(default_factory=list)
    optimized: bool = False

    @property
    def full_text(self) -> str:
        return f"{self.system_prompt}\n\n{self.user_prompt}"


@dataclass
class ComicPanel:
    order: int
    content: PanelContent
    image_file: str
    image_url: str = ""

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "content": self.content.to_dict(),
            "image_file": self.image_file,
            "image_url": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ComicPanel":
        return cls(
            order=int(data["order"]),
            content=PanelContent.from_dict(data["content"]),
            image_file=data["image_file"],
            image_url=data.get("image_url", ""),
        )


@dataclass
class MultiPanelComic:
    """An assembled comic. Owned by the store once saved."""
    id: str
    title: str
    panels: list[ComicPanel]
    math_concept: str
    options: GenerationOptions
    keywords: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "panels": [p.to_dict() for p in self.panels],
            "math_concept": self.math_concept,
            "keywords": list(self.keywords),
            "options": self.options.to_dict(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MultiPanelComic":
        return cls(
            id=data["id"],
            title=data["title"],
            panels=[ComicPanel.from_dict(p) for p in data["panels"]],
            math_concept=data["math_concept"],
            keywords=list(data.get("keywords", [])),
            options=GenerationOptions.from_dict(data["options"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class ComicMetadata:
    """Lightweight projection used for listing and statistics."""
    id: str
    title: str
    created_at: datetime
    panel_count: int
    math_concept: str = ""
    age_group: str = ""
    style: str = ""
    file_size: int = 0

    @classmethod
    def from_comic(cls, comic: MultiPanelComic, file_size: int = 0) -> "ComicMetadata":
        return cls(
            id=comic.id,
            title=comic.title,
            created_at=comic.created_at,
            panel_count=len(comic.panels),
            math_concept=comic.math_concept,
            age_group=comic.options.age_group.value,
            style=comic.options.style.value,
            file_size=file_size,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "panel_count": self.panel_count,
            "math_concept": self.math_concept,
            "age_group": self.age_group,
            "style": self.style,
            "file_size": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ComicMetadata":
        return cls(
            id=data["id"],
            title=data["title"],
            created_at=datetime.fromisoformat(data["created_at"]),
            panel_count=int(data["panel_count"]),
            math_concept=data.get("math_concept", ""),
            age_group=data.get("age_group", ""),
            style=data.get("style", ""),
            file_size=int(data.get("file_size", 0)),
        )


@dataclass
class ComicStatistics:
    total_comics: int = 0
    comics_this_week: int = 0
    comics_this_month: int = 0
    total_panels: int = 0
    comics_by_age_group: dict[str, int] = field(default_factory=dict)
    comics_by_style: dict[str, int] = field(default_factory=dict)
    total_storage_size: int = 0
    most_popular_concepts: list[str] = field(default_factory=list)


@dataclass
class APIError:
    """A classified failure from the content API."""
    error_code: str
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    retry_after: Optional[float] = None  # Provider hint in seconds


@dataclass
class ErrorResponse:
    """The only failure shape shown to callers of the pipeline."""
    user_message: str
    should_retry: bool = False
    retry_after: Optional[float] = None
    resolution_steps: list[str] = field(default_factory=list)
    error_code: str = "UNKNOWN"

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "user_message": self.user_message,
            "should_retry": self.should_retry,
            "retry_after": self.retry_after,
            "resolution_steps": list(self.resolution_steps),
        }
