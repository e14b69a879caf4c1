"""Builders shared across test modules."""

import json

from src.core.models import ComicPanel, GenerationOptions, MultiPanelComic, PanelContent


def make_panels(count: int) -> list[PanelContent]:
    return [
        PanelContent(
            image_description=f"小兔子数胡萝卜，第{i}幅",
            dialogue=[f"我有{i}个胡萝卜！"],
            narration=f"第{i}步：一起来数数。",
        )
        for i in range(1, count + 1)
    ]


def make_comic(
    comic_id: str = "abc123",
    title: str = "小兔子学加法",
    options: GenerationOptions | None = None,
) -> MultiPanelComic:
    options = options or GenerationOptions()
    return MultiPanelComic(
        id=comic_id,
        title=title,
        panels=[
            ComicPanel(
                order=i,
                content=panel,
                image_file=f"panel_{i}_0123456789abcdef.png",
                image_url=f"/api/v1/images/panel_{i}_0123456789abcdef.png",
            )
            for i, panel in enumerate(make_panels(options.panel_count), start=1)
        ],
        math_concept="加法运算",
        keywords=["加法", "运算"],
        options=options,
    )


def comic_json(panel_count: int = 4, title: str = "小兔子学加法") -> str:
    """JSON body the content API would return for a comic."""
    return json.dumps({
        "title": title,
        "panels": [
            {
                "image_description": p.image_description,
                "dialogue": p.dialogue,
                "narration": p.narration or "",
            }
            for p in make_panels(panel_count)
        ],
    }, ensure_ascii=False)
