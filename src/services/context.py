"""
Pipeline context: the process-wide services a pipeline invocation needs.

Created once by the entry point (FastAPI lifespan or CLI) and closed by it;
nothing here is a module-level singleton.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from src.core.assembler import ComicAssembler
from src.core.concept_validator import MathConceptValidator
from src.core.config import AppConfig
from src.core.events import PipelineEventLogger
from src.core.image_generator import ImageConfig, PanelImageRenderer
from src.core.llm_connector import ComicContentClient, OpenRouterClient
from src.core.options_processor import GenerationOptionsProcessor
from src.core.prompts import PromptGenerator
from src.core.resources import ResourceManager
from src.core.storage import ComicStorage
from src.core.text_processor import ContentSafetyFilter

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    config: AppConfig
    resources: ResourceManager
    events: PipelineEventLogger
    storage: ComicStorage
    validator: MathConceptValidator
    options_processor: GenerationOptionsProcessor
    prompt_generator: PromptGenerator
    content_client: ComicContentClient
    image_renderer: PanelImageRenderer
    assembler: ComicAssembler = field(default_factory=ComicAssembler)

    @classmethod
    def create(
        cls,
        config: Optional[AppConfig] = None,
        image_config: Optional[ImageConfig] = None,
    ) -> "PipelineContext":
        """Wire up all collaborators and start the event listener."""
        config = config or AppConfig()
        image_config = image_config or ImageConfig()

        resources = ResourceManager(config.resources)
        events = PipelineEventLogger(config.events)
        events.start()

        llm = OpenRouterClient(config.llm, resources=resources)
        context = cls(
            config=config,
            resources=resources,
            events=events,
            storage=ComicStorage(config.storage),
            validator=MathConceptValidator(),
            options_processor=GenerationOptionsProcessor(),
            prompt_generator=PromptGenerator(llm, optimize=config.llm.optimize_prompts),
            content_client=ComicContentClient(llm, safety_filter=ContentSafetyFilter(), events=events),
            image_renderer=PanelImageRenderer(
                image_config, config.storage, resources=resources, events=events
            ),
        )

        if not config.llm.validate():
            logger.warning("No OpenRouter API key found - comic generation will fail until OPENROUTER_API_KEY is set")
        return context

    async def aclose(self) -> None:
        await self.image_renderer.close()
        self.events.close()
        logger.info(f"Pipeline context closed (events dropped: {self.events.dropped_count})")

    async def __aenter__(self) -> "PipelineContext":
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.aclose()
