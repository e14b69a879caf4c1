"""
Generation options normalization.

All functions here are pure: they never mutate their inputs and always
return a fresh GenerationOptions or ValidationResult.
"""

from dataclasses import replace
from enum import Enum
from typing import Any, Mapping, Optional, Union

from src.core.config import (
    DEFAULT_LANGUAGE,
    DEFAULT_PANEL_COUNT,
    PANEL_COUNT_MAX,
    PANEL_COUNT_MIN,
    SUPPORTED_LANGUAGES,
)
from src.core.models import AgeGroup, GenerationOptions, ValidationResult, VisualStyle

# Panel ceiling for the youngest readers and floor for adults
CHILD_MAX_PANELS = 4
ADULT_MIN_PANELS = 4

OptionsInput = Union[GenerationOptions, Mapping[str, Any], None]


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        for member in enum_cls:
            if member.value == key or member.name.lower() == key:
                return member
    return default


def _coerce_language(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_LANGUAGE
    key = value.strip().lower()
    if key in SUPPORTED_LANGUAGES:
        return key
    by_name = {name.lower(): code for code, name in SUPPORTED_LANGUAGES.items()}
    return by_name.get(key, DEFAULT_LANGUAGE)


def _coerce_panel_count(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_PANEL_COUNT
    try:
        count = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PANEL_COUNT
    if PANEL_COUNT_MIN <= count <= PANEL_COUNT_MAX:
        return count
    return DEFAULT_PANEL_COUNT


def _clamp(count: int) -> int:
    return max(PANEL_COUNT_MIN, min(PANEL_COUNT_MAX, count))


def _panel_count_failure() -> ValidationResult:
    return ValidationResult.fail(
        f"面板数量必须在{PANEL_COUNT_MIN}-{PANEL_COUNT_MAX}之间",
        [f"请选择{PANEL_COUNT_MIN}到{PANEL_COUNT_MAX}个面板", f"推荐使用{DEFAULT_PANEL_COUNT}个面板"],
    )


class GenerationOptionsProcessor:
    """Validates, defaults and age-adjusts comic generation options."""

    def apply_defaults(self, options: OptionsInput = None) -> GenerationOptions:
        """
        Return a fully populated GenerationOptions.

        Accepts None, a mapping of raw values (e.g. from JSON) or an existing
        GenerationOptions. Missing or invalid fields fall back to defaults,
        so the result always passes the panel bound check. Idempotent.
        """
        if options is None:
            return GenerationOptions()

        if isinstance(options, GenerationOptions):
            data: Mapping[str, Any] = options.to_dict()
        else:
            data = options

        narration = data.get("include_narration", True)
        return GenerationOptions(
            age_group=_coerce_enum(AgeGroup, data.get("age_group"), AgeGroup.CHILD),
            panel_count=_coerce_panel_count(data.get("panel_count", DEFAULT_PANEL_COUNT)),
            style=_coerce_enum(VisualStyle, data.get("style"), VisualStyle.CARTOON),
            language=_coerce_language(data.get("language", DEFAULT_LANGUAGE)),
            include_narration=narration if isinstance(narration, bool) else True,
        )

    def validate_requested_panel_count(self, options: OptionsInput) -> ValidationResult:
        """
        Check the caller's panel count before defaults are applied.

        apply_defaults replaces a bad count with the default; callers that
        asked for a specific count get a validation failure instead. A
        missing count is fine.
        """
        if options is None:
            return ValidationResult.ok()
        if isinstance(options, GenerationOptions):
            requested: Any = options.panel_count
        else:
            requested = options.get("panel_count")
        if requested is None:
            return ValidationResult.ok()

        if isinstance(requested, bool):
            return ValidationResult.fail("面板数量必须是整数", [f"推荐使用{DEFAULT_PANEL_COUNT}个面板"])
        try:
            count = int(requested)
        except (TypeError, ValueError):
            return ValidationResult.fail("面板数量必须是整数", [f"推荐使用{DEFAULT_PANEL_COUNT}个面板"])
        if not PANEL_COUNT_MIN <= count <= PANEL_COUNT_MAX:
            return _panel_count_failure()
        return ValidationResult.ok()

    def validate_options(self, options: Optional[GenerationOptions]) -> ValidationResult:
        if options is None:
            return ValidationResult.fail("生成选项不能为空", ["使用默认选项"])

        if not PANEL_COUNT_MIN <= options.panel_count <= PANEL_COUNT_MAX:
            return _panel_count_failure()

        if options.language not in SUPPORTED_LANGUAGES:
            return ValidationResult.fail(
                f"不支持的语言: {options.language}",
                [f"支持的语言: {', '.join(SUPPORTED_LANGUAGES)}"],
            )

        if not self.are_options_consistent(options):
            return ValidationResult.fail(
                "生成选项之间存在冲突",
                self._consistency_suggestions(options),
            )

        return ValidationResult.ok()

    def adjust_for_age_group(
        self, options: GenerationOptions, age_group: AgeGroup
    ) -> GenerationOptions:
        """Return a copy tuned for the given age group. Never leaves the panel bound."""
        adjusted = replace(options, age_group=age_group)

        if age_group == AgeGroup.CHILD:
            adjusted = replace(
                adjusted,
                panel_count=min(adjusted.panel_count, CHILD_MAX_PANELS),
                style=VisualStyle.CARTOON if adjusted.style == VisualStyle.REALISTIC else adjusted.style,
                include_narration=True,
            )
        elif age_group == AgeGroup.ADULT:
            adjusted = replace(adjusted, panel_count=max(adjusted.panel_count, ADULT_MIN_PANELS))

        return replace(adjusted, panel_count=_clamp(adjusted.panel_count))

    def are_options_consistent(self, options: GenerationOptions) -> bool:
        if not PANEL_COUNT_MIN <= options.panel_count <= PANEL_COUNT_MAX:
            return False

        if options.age_group == AgeGroup.CHILD:
            return (
                options.panel_count <= CHILD_MAX_PANELS
                and options.style != VisualStyle.REALISTIC
                and options.include_narration
            )

        if options.age_group == AgeGroup.ADULT:
            return options.panel_count >= ADULT_MIN_PANELS

        return True

    def _consistency_suggestions(self, options: GenerationOptions) -> list[str]:
        if options.age_group == AgeGroup.CHILD:
            return [
                f"儿童漫画最多{CHILD_MAX_PANELS}个面板",
                "儿童漫画请使用卡通或彩色风格",
                "儿童漫画需要包含旁白",
            ]
        if options.age_group == AgeGroup.ADULT:
            return [f"成人漫画至少需要{ADULT_MIN_PANELS}个面板"]
        return ["请检查生成选项"]
