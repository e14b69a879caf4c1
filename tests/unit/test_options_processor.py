"""Unit tests for src/core/options_processor.py."""

import pytest

from src.core.config import PANEL_COUNT_MAX, PANEL_COUNT_MIN
from src.core.models import AgeGroup, GenerationOptions, VisualStyle
from src.core.options_processor import GenerationOptionsProcessor


@pytest.fixture
def processor():
    return GenerationOptionsProcessor()


class TestApplyDefaults:
    def test_none_gives_defaults(self, processor):
        options = processor.apply_defaults(None)
        assert options == GenerationOptions()
        assert options.age_group == AgeGroup.CHILD
        assert options.panel_count == 4
        assert options.language == "zh"

    def test_coerces_raw_values(self, processor):
        options = processor.apply_defaults({
            "age_group": "TEEN",
            "panel_count": "5",
            "style": "minimalist",
            "language": "English",
            "include_narration": False,
        })
        assert options == GenerationOptions(
            age_group=AgeGroup.TEEN,
            panel_count=5,
            style=VisualStyle.MINIMALIST,
            language="en",
            include_narration=False,
        )

    @pytest.mark.parametrize("bad", [0, 2, 7, 100, "many", None, True])
    def test_out_of_bound_panel_count_falls_back(self, processor, bad):
        assert processor.apply_defaults({"panel_count": bad}).panel_count == 4

    def test_unknown_values_fall_back(self, processor):
        options = processor.apply_defaults({
            "age_group": "toddler",
            "style": "watercolor",
            "language": "fr",
            "include_narration": "no",
        })
        assert options == GenerationOptions()

    def test_idempotent(self, processor):
        once = processor.apply_defaults({"age_group": "adult", "panel_count": 6})
        assert processor.apply_defaults(once) == once

    def test_does_not_mutate_input(self, processor):
        raw = {"panel_count": 9}
        processor.apply_defaults(raw)
        assert raw == {"panel_count": 9}


class TestValidateOptions:
    def test_defaults_are_valid(self, processor):
        assert processor.validate_options(GenerationOptions()).is_valid is True

    def test_none_is_invalid(self, processor):
        assert processor.validate_options(None).is_valid is False

    def test_panel_count_out_of_bounds(self, processor):
        result = processor.validate_options(GenerationOptions(panel_count=PANEL_COUNT_MAX + 1))
        assert result.is_valid is False
        assert f"{PANEL_COUNT_MIN}-{PANEL_COUNT_MAX}" in result.error_message

    def test_unsupported_language(self, processor):
        result = processor.validate_options(GenerationOptions(language="fr"))
        assert result.is_valid is False
        assert "fr" in result.error_message

    def test_inconsistent_child_options(self, processor):
        result = processor.validate_options(
            GenerationOptions(age_group=AgeGroup.CHILD, style=VisualStyle.REALISTIC)
        )
        assert result.is_valid is False
        assert result.suggestions


class TestValidateRequestedPanelCount:
    @pytest.mark.parametrize("options", [None, {}, {"panel_count": None}, {"panel_count": "5"}, GenerationOptions()])
    def test_accepts_missing_or_in_range(self, processor, options):
        assert processor.validate_requested_panel_count(options).is_valid is True

    @pytest.mark.parametrize("bad", [0, 2, 7, 100])
    def test_rejects_out_of_range(self, processor, bad):
        result = processor.validate_requested_panel_count({"panel_count": bad})
        assert result.is_valid is False
        assert f"{PANEL_COUNT_MIN}-{PANEL_COUNT_MAX}" in result.error_message
        assert result.suggestions

    @pytest.mark.parametrize("bad", ["many", True, [4]])
    def test_rejects_non_integer(self, processor, bad):
        assert processor.validate_requested_panel_count({"panel_count": bad}).is_valid is False


class TestAdjustForAgeGroup:
    def test_child_limits(self, processor):
        options = GenerationOptions(
            age_group=AgeGroup.TEEN,
            panel_count=6,
            style=VisualStyle.REALISTIC,
            include_narration=False,
        )
        adjusted = processor.adjust_for_age_group(options, AgeGroup.CHILD)
        assert adjusted.age_group == AgeGroup.CHILD
        assert adjusted.panel_count == 4
        assert adjusted.style == VisualStyle.CARTOON
        assert adjusted.include_narration is True
        assert processor.are_options_consistent(adjusted)
        # original untouched
        assert options.panel_count == 6

    def test_child_keeps_non_realistic_style(self, processor):
        options = GenerationOptions(style=VisualStyle.COLORFUL, panel_count=3)
        adjusted = processor.adjust_for_age_group(options, AgeGroup.CHILD)
        assert adjusted.style == VisualStyle.COLORFUL
        assert adjusted.panel_count == 3

    def test_adult_minimum_panels(self, processor):
        adjusted = processor.adjust_for_age_group(GenerationOptions(panel_count=3), AgeGroup.ADULT)
        assert adjusted.panel_count == 4
        assert adjusted.age_group == AgeGroup.ADULT

    def test_teen_unchanged(self, processor):
        options = GenerationOptions(panel_count=6, style=VisualStyle.REALISTIC)
        adjusted = processor.adjust_for_age_group(options, AgeGroup.TEEN)
        assert adjusted.panel_count == 6
        assert adjusted.style == VisualStyle.REALISTIC

    @pytest.mark.parametrize("age_group", list(AgeGroup))
    @pytest.mark.parametrize("count", range(PANEL_COUNT_MIN, PANEL_COUNT_MAX + 1))
    def test_stays_within_bounds(self, processor, age_group, count):
        adjusted = processor.adjust_for_age_group(GenerationOptions(panel_count=count), age_group)
        assert PANEL_COUNT_MIN <= adjusted.panel_count <= PANEL_COUNT_MAX


class TestConsistency:
    def test_child_without_narration_inconsistent(self, processor):
        options = GenerationOptions(age_group=AgeGroup.CHILD, include_narration=False)
        assert processor.are_options_consistent(options) is False

    def test_adult_with_three_panels_inconsistent(self, processor):
        options = GenerationOptions(age_group=AgeGroup.ADULT, panel_count=3)
        assert processor.are_options_consistent(options) is False

    def test_teen_anything_in_bounds(self, processor):
        options = GenerationOptions(age_group=AgeGroup.TEEN, panel_count=3, style=VisualStyle.REALISTIC)
        assert processor.are_options_consistent(options) is True
