"""
Comic assembly: zips generated content with rendered panel images.
"""

import uuid
from typing import Callable, Optional, Sequence

from src.core.models import (
    ComicContent,
    ComicPanel,
    GenerationOptions,
    MathConcept,
    MultiPanelComic,
    utc_now,
)


class ComicAssembler:
    """Builds a MultiPanelComic with a fresh id and creation time."""

    def assemble(
        self,
        content: ComicContent,
        file_names: Sequence[str],
        concept: MathConcept,
        options: GenerationOptions,
        url_for: Optional[Callable[[str], str]] = None,
    ) -> MultiPanelComic:
        """
        Pair panels with file names by position.

        Raises:
            ValueError: if the counts differ. Callers guarantee this never
                happens, so it signals a bug rather than bad user input.
        """
        if len(content.panels) != len(file_names):
            raise ValueError(
                f"Cannot assemble comic: {len(content.panels)} panels but {len(file_names)} images"
            )

        panels = [
            ComicPanel(
                order=order,
                content=panel,
                image_file=file_name,
                image_url=url_for(file_name) if url_for else "",
            )
            for order, (panel, file_name) in enumerate(zip(content.panels, file_names), start=1)
        ]

        return MultiPanelComic(
            id=uuid.uuid4().hex,
            title=content.title,
            panels=panels,
            math_concept=concept.topic,
            keywords=list(concept.keywords),
            options=options,
            created_at=utc_now(),
        )
