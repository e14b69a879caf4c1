"""
Process-wide concurrency caps.

Two pools: in-flight pipeline invocations and outbound API calls. Pipelines
that cannot get a slot within the acquire timeout are rejected with
ResourceLimitError. API calls queue by default, since they only happen
inside an already admitted pipeline.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from src.core.config import ResourceConfig
from src.core.errors import ResourceLimitError

logger = logging.getLogger(__name__)


class ResourceManager:
    def __init__(self, config: Optional[ResourceConfig] = None):
        self.config = config or ResourceConfig()
        self._api_semaphore = asyncio.Semaphore(self.config.max_concurrent_api_calls)
        self._pipeline_semaphore = asyncio.Semaphore(self.config.max_concurrent_pipelines)
        self.active_api_calls = 0
        self.active_pipelines = 0
        self.total_api_calls = 0
        self.total_pipelines = 0
        self.rejected_requests = 0

    async def _acquire(self, semaphore: asyncio.Semaphore, kind: str, timeout: Optional[float]) -> None:
        if timeout is None:
            await semaphore.acquire()
            return
        try:
            await asyncio.wait_for(semaphore.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            self.rejected_requests += 1
            logger.warning(f"Rejected {kind}: no free slot within {timeout:.1f}s")
            raise ResourceLimitError(f"系统繁忙，请稍后重试 ({kind})") from None

    @asynccontextmanager
    async def pipeline_slot(self) -> AsyncIterator[None]:
        """Admit one pipeline invocation or reject it after the acquire timeout."""
        await self._acquire(self._pipeline_semaphore, "pipeline", self.config.acquire_timeout)
        self.active_pipelines += 1
        self.total_pipelines += 1
        try:
            yield
        finally:
            self.active_pipelines -= 1
            self._pipeline_semaphore.release()

    @asynccontextmanager
    async def api_call(self, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """Hold one outbound API slot for the duration of a request."""
        await self._acquire(self._api_semaphore, "api call", timeout)
        self.active_api_calls += 1
        self.total_api_calls += 1
        try:
            yield
        finally:
            self.active_api_calls -= 1
            self._api_semaphore.release()

    def get_status(self) -> dict[str, int]:
        return {
            "active_api_calls": self.active_api_calls,
            "max_api_calls": self.config.max_concurrent_api_calls,
            "active_pipelines": self.active_pipelines,
            "max_pipelines": self.config.max_concurrent_pipelines,
            "total_api_calls": self.total_api_calls,
            "total_pipelines": self.total_pipelines,
            "rejected_requests": self.rejected_requests,
        }
