"""Integration tests for src/core/llm_connector.py (mocked HTTP)."""

import json
import logging
import pytest
from unittest.mock import AsyncMock, patch, MagicMock

import httpx

from src.core.config import LLMConfig, ResourceConfig
from src.core.errors import ProviderPermanentError, ProviderTransientError
from src.core.llm_connector import (
    ComicContentClient,
    ERROR_CLASSIFICATIONS,
    LLMResponse,
    OpenRouterClient,
    classify_api_error,
    error_code_for_status,
)
from src.core.models import APIError, DifficultyLevel, GenerationOptions, MathConcept
from src.core.prompts import PromptGenerator
from src.core.resources import ResourceManager
from src.core.text_processor import ContentSafetyFilter
from tests.helpers import comic_json


@pytest.fixture
def client(llm_config):
    return OpenRouterClient(llm_config)


def _mock_httpx_response(data: dict, status_code: int = 200, headers: dict | None = None):
    """Create a mock httpx.Response."""
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.json.return_value = data
    response.text = json.dumps(data)
    response.headers = headers or {}
    response.raise_for_status = MagicMock()
    if status_code >= 400:
        http_error = httpx.HTTPStatusError(
            "error", request=MagicMock(), response=response
        )
        response.raise_for_status.side_effect = http_error
    return response


def _patched_client(mock_client_cls, response=None, side_effect=None):
    mock_instance = AsyncMock()
    mock_instance.post.return_value = response
    mock_instance.post.side_effect = side_effect
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_instance
    return mock_instance


def _ok(content: str) -> LLMResponse:
    return LLMResponse(content=content, tokens_used=100, success=True)


def _failed(code: str, retry_after: float | None = None) -> LLMResponse:
    return LLMResponse(
        content="",
        tokens_used=0,
        success=False,
        error=f"{code} happened",
        api_error=APIError(error_code=code, message=f"{code} happened", retry_after=retry_after),
    )


async def _prompt(panel_count: int = 4):
    generator = PromptGenerator(optimize=False)
    concept = MathConcept(topic="加法运算", keywords=("加法",), difficulty=DifficultyLevel.BEGINNER)
    return await generator.generate_prompt(concept, GenerationOptions(panel_count=panel_count))


def _content_client(llm_config, *responses, safety=True, events=None):
    llm = OpenRouterClient(llm_config)
    llm._call_llm = AsyncMock(side_effect=list(responses))
    return ComicContentClient(llm, safety_filter=ContentSafetyFilter() if safety else None, events=events)


# =============================================================================
# Error classification
# =============================================================================


class TestErrorClassification:
    @pytest.mark.parametrize("code", [
        "RATE_LIMIT", "TIMEOUT", "SERVICE_UNAVAILABLE", "NETWORK_ERROR", "INVALID_RESPONSE", "UNSAFE_CONTENT",
    ])
    def test_retryable_codes(self, code):
        response = classify_api_error(APIError(error_code=code, message="x"))
        assert response.should_retry is True
        assert response.retry_after == ERROR_CLASSIFICATIONS[code].retry_after
        assert response.error_code == code
        assert response.resolution_steps

    @pytest.mark.parametrize("code", [
        "AUTHENTICATION", "QUOTA_EXCEEDED", "INVALID_REQUEST", "CONFIGURATION", "PANEL_COUNT_MISMATCH",
    ])
    def test_permanent_codes(self, code):
        response = classify_api_error(APIError(error_code=code, message="x"))
        assert response.should_retry is False
        assert response.retry_after is None

    def test_provider_hint_wins(self):
        response = classify_api_error(APIError(error_code="RATE_LIMIT", message="x", retry_after=7.0))
        assert response.retry_after == 7.0

    def test_unknown_code_never_retries(self):
        response = classify_api_error(APIError(error_code="SOMETHING_NEW", message="x"))
        assert response.should_retry is False
        assert response.error_code == "UNKNOWN"

    def test_status_mapping(self):
        assert error_code_for_status(429) == "RATE_LIMIT"
        assert error_code_for_status(504) == "TIMEOUT"
        assert error_code_for_status(503) == "SERVICE_UNAVAILABLE"
        assert error_code_for_status(401) == "AUTHENTICATION"
        assert error_code_for_status(402) == "QUOTA_EXCEEDED"
        assert error_code_for_status(400) == "INVALID_REQUEST"
        assert error_code_for_status(418) == "UNKNOWN"


# =============================================================================
# OpenRouterClient._call_llm
# =============================================================================


class TestOpenRouterClientCallLLM:
    async def test_successful_call(self, client):
        response_data = {
            "choices": [{"message": {"content": "Hello world"}}],
            "usage": {"total_tokens": 42},
        }

        mock_response = _mock_httpx_response(response_data)
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, mock_response)

            result = await client._call_llm("test prompt")
            assert result.success is True
            assert result.content == "Hello world"
            assert result.tokens_used == 42

    async def test_no_api_key(self):
        config = LLMConfig(api_key="")
        client = OpenRouterClient(config)
        result = await client._call_llm("test")
        assert result.success is False
        assert "not configured" in result.error.lower()
        assert result.api_error.error_code == "CONFIGURATION"

    async def test_http_error(self, client):
        mock_response = _mock_httpx_response({"error": "bad"}, status_code=500)
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, mock_response)

            result = await client._call_llm("test")
            assert result.success is False
            assert "API error" in result.error
            assert result.api_error.error_code == "SERVICE_UNAVAILABLE"

    async def test_rate_limit_reads_retry_after(self, client):
        mock_response = _mock_httpx_response({"error": "slow down"}, status_code=429, headers={"retry-after": "7"})
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, mock_response)

            result = await client._call_llm("test")
            assert result.api_error.error_code == "RATE_LIMIT"
            assert result.api_error.retry_after == 7.0

    async def test_timeout(self, client):
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, side_effect=httpx.ReadTimeout("too slow"))

            result = await client._call_llm("test")
            assert result.api_error.error_code == "TIMEOUT"

    async def test_request_error(self, client):
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, side_effect=httpx.RequestError("connection failed"))

            result = await client._call_llm("test")
            assert result.success is False
            assert "Request failed" in result.error
            assert result.api_error.error_code == "NETWORK_ERROR"

    async def test_malformed_body(self, client):
        mock_response = _mock_httpx_response({"unexpected": True})
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, mock_response)

            result = await client._call_llm("test")
            assert result.api_error.error_code == "INVALID_RESPONSE"

    async def test_response_format_and_system_prompt_passed(self, client):
        response_data = {
            "choices": [{"message": {"content": "{}"}}],
            "usage": {"total_tokens": 10},
        }
        mock_response = _mock_httpx_response(response_data)
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            mock_instance = _patched_client(mock_client_cls, mock_response)

            fmt = {"type": "json_schema", "json_schema": {"name": "test"}}
            await client._call_llm("test", response_format=fmt, system_prompt="be nice", model_override="x/y")
            payload = mock_instance.post.call_args.kwargs["json"]
            assert payload["response_format"] == fmt
            assert payload["model"] == "x/y"
            assert payload["messages"][0] == {"role": "system", "content": "be nice"}

    async def test_holds_api_slot(self, llm_config):
        resources = ResourceManager(ResourceConfig(max_concurrent_api_calls=1))
        client = OpenRouterClient(llm_config, resources=resources)
        mock_response = _mock_httpx_response({"choices": [{"message": {"content": "ok"}}]})
        with patch("src.core.llm_connector.httpx.AsyncClient") as mock_client_cls:
            _patched_client(mock_client_cls, mock_response)
            await client._call_llm("test")
        assert resources.total_api_calls == 1


# =============================================================================
# ComicContentClient
# =============================================================================


class TestComicContentClient:
    async def test_success(self, llm_config):
        content_client = _content_client(llm_config, _ok(comic_json(4)))
        content = await content_client.generate_comic_content(await _prompt(4))
        assert content.title == "小兔子学加法"
        assert len(content.panels) == 4
        kwargs = content_client.llm._call_llm.await_args.kwargs
        assert kwargs["response_format"]["type"] == "json_schema"
        assert kwargs["system_prompt"]

    async def test_retries_transient_then_succeeds(self, llm_config):
        content_client = _content_client(
            llm_config, _failed("SERVICE_UNAVAILABLE"), _failed("TIMEOUT"), _ok(comic_json(4))
        )
        content = await content_client.generate_comic_content(await _prompt(4))
        assert len(content.panels) == 4
        assert content_client.llm._call_llm.await_count == 3

    async def test_permanent_error_not_retried(self, llm_config):
        content_client = _content_client(llm_config, _failed("AUTHENTICATION"), _ok(comic_json(4)))
        with pytest.raises(ProviderPermanentError) as exc_info:
            await content_client.generate_comic_content(await _prompt(4))
        assert exc_info.value.to_error_response().error_code == "AUTHENTICATION"
        assert content_client.llm._call_llm.await_count == 1

    async def test_transient_exhausted(self, llm_config):
        content_client = _content_client(llm_config, *[_failed("NETWORK_ERROR")] * 3)
        with pytest.raises(ProviderTransientError) as exc_info:
            await content_client.generate_comic_content(await _prompt(4))
        assert exc_info.value.retry_after == 10.0
        assert exc_info.value.to_error_response().should_retry is True
        assert content_client.llm._call_llm.await_count == 3

    async def test_waits_for_provider_hint(self, llm_config):
        sleep = AsyncMock()
        content_client = _content_client(llm_config, _failed("RATE_LIMIT", retry_after=7.0), _ok(comic_json(4)))
        with patch("src.core.retry.asyncio.sleep", sleep):
            await content_client.generate_comic_content(await _prompt(4))
        sleep.assert_awaited_once_with(7.0)

    async def test_hint_capped_by_max_retry_delay(self, llm_config):
        llm_config.max_retry_delay = 30.0
        sleep = AsyncMock()
        content_client = _content_client(llm_config, _failed("RATE_LIMIT", retry_after=300.0), _ok(comic_json(4)))
        with patch("src.core.retry.asyncio.sleep", sleep):
            await content_client.generate_comic_content(await _prompt(4))
        sleep.assert_awaited_once_with(30.0)

    async def test_unparseable_content_is_retried(self, llm_config):
        content_client = _content_client(llm_config, _ok("I cannot do that"), _ok(comic_json(4)))
        content = await content_client.generate_comic_content(await _prompt(4))
        assert len(content.panels) == 4
        assert content_client.llm._call_llm.await_count == 2

    async def test_panel_count_mismatch_fails_fast(self, llm_config):
        content_client = _content_client(llm_config, _ok(comic_json(3)), _ok(comic_json(4)))
        with pytest.raises(ProviderPermanentError) as exc_info:
            await content_client.generate_comic_content(await _prompt(4))
        assert exc_info.value.error_code == "PANEL_COUNT_MISMATCH"
        assert content_client.llm._call_llm.await_count == 1

    async def test_unsafe_content_rejected(self, llm_config):
        unsafe = comic_json(4, title="Monster fight")
        content_client = _content_client(llm_config, *[_ok(unsafe)] * 3)
        with pytest.raises(ProviderTransientError) as exc_info:
            await content_client.generate_comic_content(await _prompt(4))
        assert exc_info.value.error_code == "UNSAFE_CONTENT"

    async def test_errors_emitted_as_events(self, llm_config):
        events = MagicMock()
        content_client = _content_client(llm_config, _failed("QUOTA_EXCEEDED"), events=events)
        with pytest.raises(ProviderPermanentError):
            await content_client.generate_comic_content(await _prompt(4))

        error_calls = [c for c in events.emit.call_args_list if c.args[0] == "api_error"]
        assert len(error_calls) == 1
        assert error_calls[0].kwargs["error_code"] == "QUOTA_EXCEEDED"
        assert error_calls[0].kwargs["level"] == logging.WARNING
