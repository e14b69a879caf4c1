"""Unit tests for src/core/text_processor.py."""

from src.core.models import AgeGroup, ComicContent, PanelContent
from src.core.text_processor import (
    ContentSafetyFilter,
    simplify_for_age_group,
    simplify_text,
)


class TestContentSafetyFilter:
    def test_clean_content_is_safe(self, sample_content):
        assert ContentSafetyFilter().is_safe(sample_content) is True

    def test_flags_terms_in_any_field(self):
        content = ComicContent(
            title="A Scary Sum",
            panels=[
                PanelContent(image_description="kids count apples", dialogue=["no fighting!"]),
                PanelContent(image_description="a table", narration="小偷拿走了苹果"),
            ],
        )
        unsafe = ContentSafetyFilter().find_unsafe_terms(content)
        assert "scary" in unsafe
        assert "fight" in unsafe
        assert "小偷" in unsafe

    def test_custom_terms(self, sample_content):
        f = ContentSafetyFilter(unsafe_terms=["胡萝卜"])
        assert f.find_unsafe_terms(sample_content) == ["胡萝卜"]


class TestSimplifyText:
    def test_general_replacements_for_all_ages(self):
        assert simplify_text("这个问题非常困难", AgeGroup.ADULT) == "这个问题很难"

    def test_child_replacements(self):
        assert simplify_text("我们来学习计算", AgeGroup.CHILD) == "我们来学算"

    def test_child_only_words_kept_for_teens(self):
        assert simplify_text("我们来学习计算", AgeGroup.TEEN) == "我们来学习计算"


class TestSimplifyForAgeGroup:
    def test_rewrites_dialogue_and_narration_only(self):
        content = ComicContent(
            title="学习加法",
            panels=[
                PanelContent(
                    image_description="老师在黑板上计算",
                    dialogue=["计算非常简单！"],
                    narration="我们一起学习。",
                ),
                PanelContent(image_description="小朋友举手", dialogue=[]),
            ],
        )
        simplified = simplify_for_age_group(content, AgeGroup.CHILD)

        assert simplified.title == "学习加法"
        assert simplified.panels[0].image_description == "老师在黑板上计算"
        assert simplified.panels[0].dialogue == ["算很简单！"]
        assert simplified.panels[0].narration == "我们一起学。"
        assert simplified.panels[1].narration is None
        # input untouched
        assert content.panels[0].dialogue == ["计算非常简单！"]

    def test_panel_count_preserved(self, sample_content):
        simplified = simplify_for_age_group(sample_content, AgeGroup.TEEN)
        assert len(simplified.panels) == len(sample_content.panels)
