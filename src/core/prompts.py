"""
Prompts for comic content and image generation.

This module centralizes all prompts sent to OpenRouter/LLMs for comic
script generation, prompt optimization and panel illustration, plus the
PromptGenerator that assembles and validates them.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Optional, TYPE_CHECKING

from src.core.config import SUPPORTED_LANGUAGES
from src.core.models import (
    AgeGroup,
    ComicContent,
    GenerationOptions,
    MathConcept,
    PanelContent,
    PromptGenerationResponse,
    ValidationResult,
    VisualStyle,
)

if TYPE_CHECKING:
    from src.core.llm_connector import OpenRouterClient

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 10
MAX_PROMPT_LENGTH = 4000

PANEL_DIRECTIVE_PATTERN = re.compile(r"exactly (\d+) panels", re.IGNORECASE)

MATH_VOCABULARY = ("数学", "math", "计算", "数字", "number", "运算")
COMIC_VOCABULARY = ("漫画", "comic", "面板", "panel", "故事", "story")


# =============================================================================
# AUDIENCE / STYLE DESCRIPTIONS
# =============================================================================

AGE_GROUP_DESCRIPTIONS = {
    AgeGroup.CHILD: "children aged 5-8; use very short sentences, friendly characters and everyday objects",
    AgeGroup.TEEN: "students aged 9-15; use clear explanations and relatable school situations",
    AgeGroup.ADULT: "adult learners; use precise terminology and real-world applications",
}

STYLE_DESCRIPTIONS = {
    VisualStyle.CARTOON: "cartoon style, bright colors, cute characters",
    VisualStyle.REALISTIC: "realistic style, close to real-life scenes",
    VisualStyle.MINIMALIST: "minimalist style, clean lines, focus on the key idea",
    VisualStyle.COLORFUL: "rich vivid colors, lively and playful visuals",
}

LANGUAGE_INSTRUCTIONS = {
    "zh": "Write all titles, dialogue and narration in simple Simplified Chinese.",
    "en": "Write all titles, dialogue and narration in simple, easy English.",
}


# =============================================================================
# COMIC SCRIPT PROMPTS
# =============================================================================

COMIC_SYSTEM_PROMPT_TEMPLATE = """You are an expert educational comic writer who explains math concepts through short multi-panel comics.

AUDIENCE: {audience}
VISUAL STYLE: {style}
LANGUAGE: {language_instruction}

RULES:
1. Every panel must teach or reinforce the math concept
2. Keep the story friendly, safe and encouraging (no violence, fear or danger)
3. Each panel needs a concrete image description an illustrator can draw without reading the other panels
4. Dialogue lines are short speech bubbles spoken by the characters
{narration_rule}"""

NARRATION_RULE_ON = "5. Every panel includes one sentence of narration"
NARRATION_RULE_OFF = "5. Leave narration empty; tell the story through dialogue and images only"

COMIC_USER_PROMPT_TEMPLATE = """Create a math comic about: {topic}

KEY CONCEPTS: {keywords}
DIFFICULTY: {difficulty}

The comic must have exactly {panel_count} panels. Start by introducing the idea, then show it in action, and end with a clear takeaway."""


# JSON Schema for Structured Outputs (OpenRouter)
COMIC_CONTENT_JSON_SCHEMA = {
    "name": "math_comic",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "title": {
                "type": "string",
                "description": "Short, catchy comic title"
            },
            "panels": {
                "type": "array",
                "description": "Comic panels in reading order",
                "items": {
                    "type": "object",
                    "properties": {
                        "image_description": {
                            "type": "string",
                            "description": "What the illustration shows: characters, setting, objects, and any numbers or shapes"
                        },
                        "dialogue": {
                            "type": "array",
                            "description": "Speech bubble lines in this panel",
                            "items": {"type": "string"}
                        },
                        "narration": {
                            "type": "string",
                            "description": "Narration caption, or an empty string"
                        }
                    },
                    "required": ["image_description", "dialogue", "narration"],
                    "additionalProperties": False
                }
            }
        },
        "required": ["title", "panels"],
        "additionalProperties": False
    }
}


def get_comic_content_response_format() -> dict:
    """
    Get the response_format parameter for structured outputs.

    Returns:
        Dict with type and json_schema for OpenRouter API
    """
    return {
        "type": "json_schema",
        "json_schema": COMIC_CONTENT_JSON_SCHEMA
    }


def parse_comic_content_response(response_text: str) -> ComicContent:
    """
    Parse the LLM response into ComicContent.

    Raises:
        ValueError: if the text is not a usable comic (bad JSON, no panels,
            or a panel without an image description).
    """
    text = response_text.strip()

    # Try direct JSON parse first (structured outputs)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Fallback: extract JSON from potential markdown wrapping
        json_match = re.search(r'\{[\s\S]*\}', text)
        if not json_match:
            raise ValueError("Response contains no JSON object")
        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise ValueError(f"Response JSON is malformed: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("panels"), list):
        raise ValueError("Response JSON has no panels list")

    panels = []
    for index, raw_panel in enumerate(data["panels"], start=1):
        if not isinstance(raw_panel, dict):
            raise ValueError(f"Panel {index} is not an object")
        description = str(raw_panel.get("image_description") or "").strip()
        if not description:
            raise ValueError(f"Panel {index} has no image description")
        dialogue = raw_panel.get("dialogue") or []
        if isinstance(dialogue, str):
            dialogue = [dialogue]
        narration = str(raw_panel.get("narration") or "").strip()
        panels.append(PanelContent(
            image_description=description,
            dialogue=[str(line).strip() for line in dialogue if str(line).strip()],
            narration=narration or None,
        ))

    title = str(data.get("title") or "").strip() or "数学漫画"
    return ComicContent(title=title, panels=panels)


# =============================================================================
# PROMPT OPTIMIZATION
# =============================================================================

PROMPT_OPTIMIZATION_TEMPLATE = """You are a prompt editor for an educational comic generator.

Rewrite the request below so it is clearer and more vivid for a comic writer. Keep the same math topic and key concepts, keep the same audience, and keep the sentence "exactly {panel_count} panels" word for word.

Return only the rewritten request, with no commentary.

REQUEST:
{user_prompt}"""


# =============================================================================
# PANEL IMAGE PROMPTS
# =============================================================================

PANEL_IMAGE_PROMPT_TEMPLATE = """Educational math comic panel {panel_number}, {style}.

SCENE: {description}

Audience: {audience}. Do not draw speech bubbles or any text; leave room at the top for captions. Make any numbers, shapes or quantities in the scene easy to count and see."""


def build_panel_image_prompt(panel: PanelContent, options: GenerationOptions, panel_number: int) -> str:
    return PANEL_IMAGE_PROMPT_TEMPLATE.format(
        panel_number=panel_number,
        style=STYLE_DESCRIPTIONS[options.style],
        description=panel.image_description,
        audience=AGE_GROUP_DESCRIPTIONS[options.age_group].split(";")[0],
    )


# =============================================================================
# PROMPT GENERATOR
# =============================================================================


def extract_panel_count(text: str) -> Optional[int]:
    match = PANEL_DIRECTIVE_PATTERN.search(text)
    return int(match.group(1)) if match else None


class PromptGenerator:
    """Builds, validates and optionally optimizes comic prompts."""

    def __init__(self, llm_client: Optional[OpenRouterClient] = None, optimize: bool = True):
        self.llm_client = llm_client
        self.optimize = optimize

    def build_system_prompt(self, options: GenerationOptions) -> str:
        return COMIC_SYSTEM_PROMPT_TEMPLATE.format(
            audience=AGE_GROUP_DESCRIPTIONS[options.age_group],
            style=STYLE_DESCRIPTIONS[options.style],
            language_instruction=LANGUAGE_INSTRUCTIONS.get(
                options.language, f"Write in {SUPPORTED_LANGUAGES.get(options.language, options.language)}."
            ),
            narration_rule=NARRATION_RULE_ON if options.include_narration else NARRATION_RULE_OFF,
        )

    def build_user_prompt(self, concept: MathConcept, options: GenerationOptions) -> str:
        return COMIC_USER_PROMPT_TEMPLATE.format(
            topic=concept.topic,
            keywords=", ".join(concept.keywords) if concept.keywords else concept.topic,
            difficulty=concept.difficulty.value if concept.difficulty else "elementary",
            panel_count=options.panel_count,
        )

    async def generate_prompt(
        self, concept: MathConcept, options: GenerationOptions
    ) -> PromptGenerationResponse:
        response = PromptGenerationResponse(
            id=uuid.uuid4().hex,
            math_concept=concept,
            system_prompt=self.build_system_prompt(options),
            user_prompt=self.build_user_prompt(concept, options),
            options=options,
        )
        response.suggestions = self.validate_prompt(response).suggestions
        return response

    def validate_prompt(self, prompt: PromptGenerationResponse) -> ValidationResult:
        """
        Check the prompt can be sent as-is.

        Hard failures: empty, too short, too long, or missing/wrong
        "exactly N panels" directive. Missing math or comic vocabulary only
        adds suggestions to an otherwise valid result.
        """
        text = prompt.full_text.strip()
        if not prompt.user_prompt.strip():
            return ValidationResult.fail("提示词不能为空", ["请提供数学主题"])
        if len(text) < MIN_PROMPT_LENGTH:
            return ValidationResult.fail(
                f"提示词过短，至少需要{MIN_PROMPT_LENGTH}个字符", ["请补充更多细节"]
            )
        if len(text) > MAX_PROMPT_LENGTH:
            return ValidationResult.fail(
                f"提示词过长，请控制在{MAX_PROMPT_LENGTH}个字符以内", ["请简化提示词内容"]
            )

        requested = extract_panel_count(prompt.user_prompt)
        if requested is None:
            return ValidationResult.fail("提示词缺少面板数量要求", ["请指明漫画的面板数量"])
        if requested != prompt.options.panel_count:
            return ValidationResult.fail(
                f"提示词中的面板数量({requested})与选项({prompt.options.panel_count})不一致",
                ["请重新生成提示词"],
            )

        result = ValidationResult.ok()
        lowered = text.lower()
        if not any(word in lowered for word in MATH_VOCABULARY):
            result.suggestions.append("建议在提示词中明确数学概念")
        if not any(word in lowered for word in COMIC_VOCABULARY):
            result.suggestions.append("建议描述漫画的故事情节")
        return result

    async def optimize_prompt(
        self, prompt: PromptGenerationResponse, options: GenerationOptions
    ) -> PromptGenerationResponse:
        """
        Best-effort rewrite of the user prompt via a secondary LLM call.

        Any failure, or a rewrite that no longer validates, returns the
        original prompt unchanged.
        """
        if not self.optimize or self.llm_client is None:
            return prompt

        request = PROMPT_OPTIMIZATION_TEMPLATE.format(
            panel_count=options.panel_count,
            user_prompt=prompt.user_prompt,
        )
        try:
            response = await self.llm_client._call_llm(
                request, model_override=self.llm_client.config.optimization_model
            )
        except Exception as e:
            logger.warning(f"Prompt optimization failed, using original prompt: {e}")
            return prompt

        if not response.success or not response.content:
            logger.warning(f"Prompt optimization failed, using original prompt: {response.error}")
            return prompt

        candidate = PromptGenerationResponse(
            id=prompt.id,
            math_concept=prompt.math_concept,
            system_prompt=prompt.system_prompt,
            user_prompt=response.content,
            options=prompt.options,
            created_at=prompt.created_at,
            optimized=True,
        )
        check = self.validate_prompt(candidate)
        if not check.is_valid:
            logger.warning(f"Optimized prompt rejected ({check.error_message}), using original prompt")
            return prompt

        candidate.suggestions = check.suggestions
        logger.info(f"Prompt optimized: {len(prompt.user_prompt)} -> {len(candidate.user_prompt)} chars")
        return candidate
