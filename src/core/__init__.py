"""
Core business logic modules.
"""

from src.core.config import AppConfig, LLMConfig, StorageConfig
from src.core.concept_validator import MathConceptValidator
from src.core.options_processor import GenerationOptionsProcessor
from src.core.prompts import PromptGenerator
from src.core.llm_connector import ComicContentClient, OpenRouterClient
from src.core.image_generator import ImageConfig, PanelImageRenderer
from src.core.assembler import ComicAssembler
from src.core.storage import ComicStorage

__all__ = [
    "AppConfig",
    "LLMConfig",
    "StorageConfig",
    "MathConceptValidator",
    "GenerationOptionsProcessor",
    "PromptGenerator",
    "ComicContentClient",
    "OpenRouterClient",
    "ImageConfig",
    "PanelImageRenderer",
    "ComicAssembler",
    "ComicStorage",
]
