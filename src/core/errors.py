"""
Typed failures raised by pipeline stages.

Every error reduces to an ErrorResponse at the pipeline boundary, so
internal exception types never reach API or CLI callers.
"""

from typing import Optional

from src.core.models import ErrorResponse


class ComicGenerationError(Exception):
    """Base class for all pipeline failures."""

    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(user_message=self.message, error_code=self.error_code)


class InputValidationError(ComicGenerationError):
    """Raw topic was rejected. User-correctable, never retried."""

    error_code = "INVALID_INPUT"

    def __init__(self, message: str, suggestions: Optional[list[str]] = None):
        super().__init__(message)
        self.suggestions = list(suggestions or [])

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            user_message=self.message,
            should_retry=False,
            resolution_steps=self.suggestions,
            error_code=self.error_code,
        )


class OptionsInconsistencyError(ComicGenerationError):
    """Generation options contradict each other after normalization."""

    error_code = "INVALID_OPTIONS"

    def __init__(self, message: str, suggestions: Optional[list[str]] = None):
        super().__init__(message)
        self.suggestions = list(suggestions or [])

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            user_message=self.message,
            should_retry=False,
            resolution_steps=self.suggestions,
            error_code=self.error_code,
        )


class _ProviderError(ComicGenerationError):
    def __init__(self, response: ErrorResponse):
        super().__init__(response.user_message)
        self.response = response
        self.error_code = response.error_code

    def to_error_response(self) -> ErrorResponse:
        return self.response


class ProviderTransientError(_ProviderError):
    """Retryable provider failure, raised once the retry budget is spent."""

    @property
    def retry_after(self) -> Optional[float]:
        return self.response.retry_after


class ProviderPermanentError(_ProviderError):
    """Provider failure that retrying cannot fix."""


class RenderingFailure(ComicGenerationError):
    """A panel image could not be produced, so the comic is abandoned."""

    error_code = "RENDERING_FAILED"

    def __init__(self, message: str, panel_number: Optional[int] = None):
        super().__init__(message)
        self.panel_number = panel_number

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            user_message=self.message,
            should_retry=False,
            resolution_steps=[
                "Try generating the comic again later",
                "Try a simpler or more concrete math topic",
            ],
            error_code=self.error_code,
        )


class StorageFailure(ComicGenerationError):
    """Reading or writing a comic artifact failed."""

    error_code = "STORAGE_ERROR"

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            user_message=self.message,
            should_retry=False,
            resolution_steps=["Check free disk space and storage permissions"],
            error_code=self.error_code,
        )


class ComicNotFoundError(StorageFailure):
    """No stored comic has the requested id."""

    error_code = "NOT_FOUND"

    def __init__(self, comic_id: str):
        super().__init__(f"漫画不存在: {comic_id}")
        self.comic_id = comic_id


class ResourceLimitError(ComicGenerationError):
    """Capacity cap reached, so the request was rejected instead of queued forever."""

    error_code = "RESOURCE_LIMIT"

    def __init__(self, message: str, retry_after: float = 5.0):
        super().__init__(message)
        self.retry_after = retry_after

    def to_error_response(self) -> ErrorResponse:
        return ErrorResponse(
            user_message=self.message,
            should_retry=True,
            retry_after=self.retry_after,
            error_code=self.error_code,
        )
