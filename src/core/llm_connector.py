"""
OpenRouter LLM Connector.

This module handles communication with the OpenRouter API for comic script
generation and prompt optimization. Failures are classified into APIError
codes, and the classification table decides what gets retried.
"""

from __future__ import annotations

import httpx
import json
import logging
from typing import Optional, TYPE_CHECKING
from dataclasses import dataclass

from src.core.config import LLMConfig
from src.core.errors import ProviderPermanentError, ProviderTransientError
from src.core.models import APIError, ComicContent, ErrorResponse, PromptGenerationResponse
from src.core.prompts import get_comic_content_response_format, parse_comic_content_response
from src.core.retry import async_retry

if TYPE_CHECKING:
    from src.core.events import PipelineEventLogger
    from src.core.resources import ResourceManager
    from src.core.text_processor import ContentSafetyFilter

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

@dataclass(frozen=True)
class ErrorClassification:
    should_retry: bool
    retry_after: Optional[float]
    user_message: str
    resolution_steps: tuple[str, ...] = ()


ERROR_CLASSIFICATIONS: dict[str, ErrorClassification] = {
    "RATE_LIMIT": ErrorClassification(
        True, 60.0, "请求过于频繁，请稍后重试",
        ("等待一分钟后重试", "减少同时生成的漫画数量"),
    ),
    "TIMEOUT": ErrorClassification(
        True, 30.0, "请求超时，请稍后重试",
        ("检查网络连接", "稍后重试", "尝试减少面板数量"),
    ),
    "SERVICE_UNAVAILABLE": ErrorClassification(
        True, 20.0, "内容生成服务暂时不可用",
        ("稍后重试",),
    ),
    "NETWORK_ERROR": ErrorClassification(
        True, 10.0, "网络连接失败",
        ("检查网络连接", "稍后重试"),
    ),
    "INVALID_RESPONSE": ErrorClassification(
        True, 5.0, "生成的内容格式不正确",
        ("重新生成漫画",),
    ),
    "UNSAFE_CONTENT": ErrorClassification(
        True, 5.0, "生成的内容不适合教育场景",
        ("重新生成漫画", "尝试换一种描述方式"),
    ),
    "AUTHENTICATION": ErrorClassification(
        False, None, "API认证失败",
        ("检查OPENROUTER_API_KEY是否正确", "确认API密钥未过期", "联系管理员"),
    ),
    "QUOTA_EXCEEDED": ErrorClassification(
        False, None, "API配额已用完",
        ("检查账户余额", "升级API套餐", "联系管理员"),
    ),
    "INVALID_REQUEST": ErrorClassification(
        False, None, "请求参数无效",
        ("检查输入的数学概念", "简化描述后重试"),
    ),
    "CONFIGURATION": ErrorClassification(
        False, None, "内容生成服务未配置",
        ("在.env文件中设置OPENROUTER_API_KEY", "重启服务"),
    ),
    "PANEL_COUNT_MISMATCH": ErrorClassification(
        False, None, "生成的面板数量与要求不符",
        ("重新生成漫画", "尝试调整面板数量"),
    ),
}

UNKNOWN_CLASSIFICATION = ErrorClassification(
    False, None, "发生未知错误",
    ("稍后重试", "如果问题持续存在，请联系管理员"),
)


def classify_api_error(error: APIError) -> ErrorResponse:
    """Map an APIError to the caller-facing ErrorResponse. Unknown codes never retry."""
    entry = ERROR_CLASSIFICATIONS.get(error.error_code, UNKNOWN_CLASSIFICATION)
    retry_after = None
    if entry.should_retry:
        retry_after = error.retry_after if error.retry_after is not None else entry.retry_after
    return ErrorResponse(
        user_message=entry.user_message,
        should_retry=entry.should_retry,
        retry_after=retry_after,
        resolution_steps=list(entry.resolution_steps),
        error_code=error.error_code if error.error_code in ERROR_CLASSIFICATIONS else "UNKNOWN",
    )


def error_code_for_status(status_code: int) -> str:
    if status_code == 429:
        return "RATE_LIMIT"
    if status_code in (408, 504):
        return "TIMEOUT"
    if status_code in (500, 502, 503):
        return "SERVICE_UNAVAILABLE"
    if status_code in (401, 403):
        return "AUTHENTICATION"
    if status_code == 402:
        return "QUOTA_EXCEEDED"
    if status_code in (400, 404, 422):
        return "INVALID_REQUEST"
    return "UNKNOWN"


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not isinstance(value, str):
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


# =============================================================================
# TRANSPORT
# =============================================================================

@dataclass
class LLMResponse:
    """Response from LLM API."""
    content: str
    tokens_used: int
    success: bool
    error: Optional[str] = None
    api_error: Optional[APIError] = None


def _failed(code: str, message: str, retry_after: Optional[float] = None) -> LLMResponse:
    return LLMResponse(
        content="",
        tokens_used=0,
        success=False,
        error=message,
        api_error=APIError(error_code=code, message=message, retry_after=retry_after),
    )


class OpenRouterClient:
    """Client for OpenRouter chat completions."""

    def __init__(self, config: LLMConfig, resources: Optional[ResourceManager] = None):
        self.config = config
        self.resources = resources
        self.headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/math-comic-generator",
            "X-Title": "Math Comic Generator"
        }

    async def _call_llm(
        self,
        prompt: str,
        response_format: Optional[dict] = None,
        model_override: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """
        Make a call to the LLM API.

        Args:
            prompt: The user message to send
            response_format: Optional response format for structured outputs
                            (e.g., {"type": "json_schema", "json_schema": {...}})
            model_override: Optional model to use instead of config.model
            system_prompt: Optional system message sent before the prompt

        Returns:
            LLMResponse with the result. Failures carry a classified APIError.
        """
        if not self.config.validate():
            return _failed(
                "CONFIGURATION",
                "OpenRouter API key not configured. Set OPENROUTER_API_KEY in .env file.",
            )

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": model_override or self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature
        }

        # Add structured outputs if specified
        if response_format:
            payload["response_format"] = response_format

        if self.resources is None:
            return await self._post(payload)
        async with self.resources.api_call():
            return await self._post(payload)

    async def _post(self, payload: dict) -> LLMResponse:
        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                response = await client.post(
                    f"{self.config.base_url}/chat/completions",
                    headers=self.headers,
                    json=payload
                )
                response.raise_for_status()

                data = response.json()
                content = data["choices"][0]["message"]["content"]
                tokens = data.get("usage", {}).get("total_tokens", 0)

                return LLMResponse(
                    content=(content or "").strip(),
                    tokens_used=tokens,
                    success=True
                )

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            return _failed(
                error_code_for_status(status),
                f"API error: {status} - {e.response.text[:500]}",
                retry_after=_parse_retry_after(e.response),
            )
        except httpx.TimeoutException as e:
            return _failed("TIMEOUT", f"Request timed out: {str(e)}")
        except httpx.RequestError as e:
            return _failed("NETWORK_ERROR", f"Request failed: {str(e)}")
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
            return _failed("INVALID_RESPONSE", f"Invalid response format: {str(e)}")


# =============================================================================
# COMIC CONTENT CLIENT
# =============================================================================

class ProviderCallError(Exception):
    """One failed content attempt, already classified."""

    def __init__(self, api_error: APIError, response: ErrorResponse):
        super().__init__(f"{api_error.error_code}: {api_error.message}")
        self.api_error = api_error
        self.response = response


class ComicContentClient:
    """
    Generates structured comic content and owns the retry policy.

    Only failures classified with should_retry=True are retried. The wait
    between attempts is the provider's Retry-After hint when present,
    otherwise exponential backoff capped at max_retry_delay.
    """

    def __init__(
        self,
        llm: OpenRouterClient,
        safety_filter: Optional[ContentSafetyFilter] = None,
        events: Optional[PipelineEventLogger] = None,
    ):
        self.llm = llm
        self.safety_filter = safety_filter
        self.events = events

    @property
    def config(self) -> LLMConfig:
        return self.llm.config

    async def handle_api_error(self, error: APIError) -> ErrorResponse:
        response = classify_api_error(error)
        if self.events:
            self.events.emit(
                "api_error",
                level=logging.WARNING,
                stage="content",
                error_code=response.error_code,
                success=False,
                should_retry=response.should_retry,
                message=error.message[:200],
            )
        return response

    async def _call_error(self, code: str, message: str) -> ProviderCallError:
        api_error = APIError(error_code=code, message=message)
        return ProviderCallError(api_error, await self.handle_api_error(api_error))

    async def _attempt(self, prompt: PromptGenerationResponse) -> ComicContent:
        if self.events:
            self.events.emit("api_request", stage="content", prompt_id=prompt.id,
                             prompt_chars=len(prompt.full_text))

        response = await self.llm._call_llm(
            prompt.user_prompt,
            response_format=get_comic_content_response_format(),
            system_prompt=prompt.system_prompt,
        )
        if not response.success:
            api_error = response.api_error or APIError("UNKNOWN", response.error or "Unknown error")
            raise ProviderCallError(api_error, await self.handle_api_error(api_error))

        try:
            content = parse_comic_content_response(response.content)
        except ValueError as e:
            raise await self._call_error("INVALID_RESPONSE", str(e)) from e

        expected = prompt.options.panel_count
        if len(content.panels) != expected:
            raise await self._call_error(
                "PANEL_COUNT_MISMATCH",
                f"Expected {expected} panels, got {len(content.panels)}",
            )

        if self.safety_filter is not None:
            unsafe = self.safety_filter.find_unsafe_terms(content)
            if unsafe:
                raise await self._call_error("UNSAFE_CONTENT", f"Unsafe terms in content: {', '.join(unsafe)}")

        if self.events:
            self.events.emit("api_response", stage="content", success=True,
                             tokens=response.tokens_used, panels=len(content.panels))
        return content

    async def generate_comic_content(self, prompt: PromptGenerationResponse) -> ComicContent:
        """
        Generate comic content for a validated prompt.

        Raises:
            ProviderTransientError: retryable failures persisted past the attempt budget.
            ProviderPermanentError: a non-retryable failure, raised after one call.
        """
        cfg = self.config
        attempt_with_retry = async_retry(
            max_attempts=cfg.max_attempts,
            backoff_base=cfg.backoff_base,
            retry_on=(ProviderCallError,),
            retry_if=lambda exc: exc.response.should_retry,
            delay_for=lambda exc, _attempt: exc.api_error.retry_after,
            max_delay=cfg.max_retry_delay,
        )(self._attempt)

        try:
            content = await attempt_with_retry(prompt)
        except ProviderCallError as e:
            if e.response.should_retry:
                raise ProviderTransientError(e.response) from e
            raise ProviderPermanentError(e.response) from e

        logger.info(f"Generated comic content '{content.title}' with {len(content.panels)} panels")
        return content
