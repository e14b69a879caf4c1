"""
Text post-processing for generated comic content.

Handles the safety check on generated scripts and vocabulary
simplification for younger readers.
"""

from typing import Iterable, List

from src.core.models import AgeGroup, ComicContent, PanelContent

UNSAFE_TERMS = (
    "暴力", "打架", "伤害", "恐怖", "害怕", "死亡", "血", "武器",
    "危险", "不安全", "坏人", "小偷", "犯罪",
    "violence", "fight", "hurt", "scary", "fear", "death", "blood", "weapon",
    "danger", "unsafe", "bad guy", "thief", "crime",
)

# Applied for every age group
GENERAL_REPLACEMENTS = {
    "非常": "很",
    "特别": "很",
    "困难": "难",
}

# Extra replacements for the youngest readers
CHILD_REPLACEMENTS = {
    "计算": "算",
    "运算": "算",
    "解决": "做",
    "理解": "知道",
    "学习": "学",
}


class ContentSafetyFilter:
    """Flags generated comic text that is not suitable for a classroom."""

    def __init__(self, unsafe_terms: Iterable[str] = UNSAFE_TERMS):
        self.unsafe_terms = tuple(t.lower() for t in unsafe_terms)

    def _panel_text(self, panel: PanelContent) -> str:
        return " ".join([panel.image_description, *panel.dialogue, panel.narration or ""]).lower()

    def find_unsafe_terms(self, content: ComicContent) -> List[str]:
        """Return unsafe terms found anywhere in the comic, in lexicon order."""
        text = " ".join([content.title.lower(), *(self._panel_text(p) for p in content.panels)])
        return [term for term in self.unsafe_terms if term in text]

    def is_safe(self, content: ComicContent) -> bool:
        return not self.find_unsafe_terms(content)


def _replace_all(text: str, replacements: dict[str, str]) -> str:
    for source, target in replacements.items():
        text = text.replace(source, target)
    return text


def simplify_text(text: str, age_group: AgeGroup) -> str:
    text = _replace_all(text, GENERAL_REPLACEMENTS)
    if age_group == AgeGroup.CHILD:
        text = _replace_all(text, CHILD_REPLACEMENTS)
    return text


def simplify_for_age_group(content: ComicContent, age_group: AgeGroup) -> ComicContent:
    """
    Return a copy of the content with simpler vocabulary for the reader's age.

    Only dialogue and narration are rewritten; the title and image
    descriptions are left as generated.
    """
    panels = [
        PanelContent(
            image_description=panel.image_description,
            dialogue=[simplify_text(line, age_group) for line in panel.dialogue],
            narration=simplify_text(panel.narration, age_group) if panel.narration else panel.narration,
        )
        for panel in content.panels
    ]
    return ComicContent(title=content.title, panels=panels)
