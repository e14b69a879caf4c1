"""
Comic generation pipeline.

Runs the stages in a fixed order, each one a hard gate:

    validate topic -> normalize options -> build prompt -> optimize prompt
    -> generate content -> simplify text -> render panels -> assemble -> save

Any failure aborts the run with a typed ComicGenerationError. The public
entry point, generate_comic(), turns every failure into an ErrorResponse so
internal exception types never reach API or CLI callers. Cancellation is
never caught and propagates to in-flight API calls and panel renders.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

from src.core.errors import (
    ComicGenerationError,
    InputValidationError,
    OptionsInconsistencyError,
    StorageFailure,
)
from src.core.models import ErrorResponse, MultiPanelComic, ValidationResult
from src.core.options_processor import OptionsInput
from src.core.retry import async_retry
from src.core.text_processor import simplify_for_age_group
from src.services.context import PipelineContext

logger = logging.getLogger(__name__)


def internal_error_response() -> ErrorResponse:
    return ErrorResponse(
        user_message="生成漫画时发生内部错误",
        should_retry=False,
        resolution_steps=["稍后重试", "如果问题持续存在，请联系管理员"],
        error_code="INTERNAL_ERROR",
    )


@dataclass
class PipelineResult:
    """Either a saved comic or the error that stopped the run."""
    comic: Optional[MultiPanelComic] = None
    error: Optional[ErrorResponse] = None
    stage_durations_ms: dict[str, float] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.comic is not None


class ComicGenerationPipeline:
    def __init__(self, context: PipelineContext):
        self.context = context

    @property
    def events(self):
        return self.context.events

    @contextmanager
    def _stage(self, name: str, timings: dict[str, float]) -> Iterator[None]:
        """Time a stage and emit its outcome as a pipeline event."""
        start = time.perf_counter()
        try:
            yield
        except BaseException as e:
            timings[name] = (time.perf_counter() - start) * 1000
            self.events.emit(
                "stage_failed",
                level=logging.WARNING,
                stage=name,
                duration_ms=timings[name],
                success=False,
                error_code=getattr(e, "error_code", type(e).__name__),
            )
            raise
        timings[name] = (time.perf_counter() - start) * 1000
        self.events.emit("stage_completed", stage=name, duration_ms=timings[name], success=True)

    def validate_topic(self, raw_topic: str) -> ValidationResult:
        """Validate a topic without generating anything."""
        result = self.context.validator.validate_input(raw_topic)
        self.events.emit(
            "validation",
            stage="validation",
            success=result.is_valid,
            error=result.error_message or None,
        )
        return result

    @async_retry(max_attempts=2, backoff_base=0.5, retry_on=(StorageFailure,))
    async def _save(self, comic: MultiPanelComic) -> str:
        return await self.context.storage.save_comic(comic)

    async def run(
        self,
        raw_topic: str,
        options: OptionsInput = None,
        timings: Optional[dict[str, float]] = None,
    ) -> MultiPanelComic:
        """
        Generate and persist one comic.

        Raises:
            ComicGenerationError: a stage failed (see subclasses in src.core.errors).
        """
        ctx = self.context
        timings = timings if timings is not None else {}

        async with ctx.resources.pipeline_slot():
            with self._stage("validation", timings):
                check = self.validate_topic(raw_topic)
                if not check.is_valid:
                    raise InputValidationError(check.error_message, check.suggestions)
                concept = ctx.validator.parse_math_concept(raw_topic)

            with self._stage("options", timings):
                check = ctx.options_processor.validate_requested_panel_count(options)
                if not check.is_valid:
                    raise OptionsInconsistencyError(check.error_message, check.suggestions)
                opts = ctx.options_processor.apply_defaults(options)
                opts = ctx.options_processor.adjust_for_age_group(opts, opts.age_group)
                check = ctx.options_processor.validate_options(opts)
                if not check.is_valid:
                    raise OptionsInconsistencyError(check.error_message, check.suggestions)

            logger.info(
                f"Generating comic: topic='{concept.topic}', age_group={opts.age_group.value}, "
                f"panels={opts.panel_count}, style={opts.style.value}"
            )

            with self._stage("prompt", timings):
                prompt = await ctx.prompt_generator.generate_prompt(concept, opts)
                check = ctx.prompt_generator.validate_prompt(prompt)
                if not check.is_valid:
                    raise InputValidationError(check.error_message, check.suggestions)

            with self._stage("optimize", timings):
                prompt = await ctx.prompt_generator.optimize_prompt(prompt, opts)

            with self._stage("content", timings):
                content = await ctx.content_client.generate_comic_content(prompt)

            with self._stage("postprocess", timings):
                content = simplify_for_age_group(content, opts.age_group)

            with self._stage("images", timings):
                file_names = await ctx.image_renderer.generate_all_panel_images(content.panels, opts)

            with self._stage("assembly", timings):
                comic = ctx.assembler.assemble(
                    content, file_names, concept, opts, url_for=ctx.image_renderer.get_image_url
                )

            with self._stage("save", timings):
                await self._save(comic)

        logger.info(f"Comic {comic.id} generated: '{comic.title}' ({len(comic.panels)} panels)")
        return comic

    async def generate_comic(self, raw_topic: str, options: OptionsInput = None) -> PipelineResult:
        """Run the pipeline and reduce any failure to an ErrorResponse."""
        timings: dict[str, float] = {}
        start = time.perf_counter()
        try:
            comic = await self.run(raw_topic, options, timings)
        except ComicGenerationError as e:
            error = e.to_error_response()
            logger.warning(f"Comic generation failed [{error.error_code}]: {e.message}")
            self._emit_finished(start, success=False, error_code=error.error_code)
            return PipelineResult(error=error, stage_durations_ms=timings)
        except Exception as e:
            logger.error(f"Unexpected error generating comic: {e}", exc_info=True)
            error = internal_error_response()
            self._emit_finished(start, success=False, error_code=error.error_code)
            return PipelineResult(error=error, stage_durations_ms=timings)

        self._emit_finished(start, success=True, comic_id=comic.id)
        return PipelineResult(comic=comic, stage_durations_ms=timings)

    def _emit_finished(self, start: float, **fields) -> None:
        self.events.emit(
            "pipeline_finished",
            stage="pipeline",
            duration_ms=(time.perf_counter() - start) * 1000,
            **fields,
        )
