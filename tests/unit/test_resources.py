"""Unit tests for src/core/resources.py."""

import asyncio

import pytest

from src.core.config import ResourceConfig
from src.core.errors import ResourceLimitError
from src.core.resources import ResourceManager


class TestPipelineSlot:
    async def test_tracks_active_and_total(self, resource_config):
        manager = ResourceManager(resource_config)
        async with manager.pipeline_slot():
            assert manager.active_pipelines == 1
        assert manager.active_pipelines == 0
        assert manager.total_pipelines == 1

    async def test_rejects_when_full(self):
        manager = ResourceManager(ResourceConfig(max_concurrent_pipelines=1, acquire_timeout=0.05))
        async with manager.pipeline_slot():
            with pytest.raises(ResourceLimitError) as exc_info:
                async with manager.pipeline_slot():
                    pass
        assert manager.rejected_requests == 1
        response = exc_info.value.to_error_response()
        assert response.error_code == "RESOURCE_LIMIT"
        assert response.should_retry is True

    async def test_slot_released_on_error(self):
        manager = ResourceManager(ResourceConfig(max_concurrent_pipelines=1, acquire_timeout=0.05))
        with pytest.raises(RuntimeError):
            async with manager.pipeline_slot():
                raise RuntimeError("stage failed")
        async with manager.pipeline_slot():
            assert manager.active_pipelines == 1


class TestApiCall:
    async def test_caps_concurrency(self):
        manager = ResourceManager(ResourceConfig(max_concurrent_api_calls=2))
        peak = 0

        async def call():
            nonlocal peak
            async with manager.api_call():
                peak = max(peak, manager.active_api_calls)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(call() for _ in range(6)))
        assert peak == 2
        assert manager.total_api_calls == 6
        assert manager.rejected_requests == 0

    async def test_queues_past_acquire_timeout(self):
        manager = ResourceManager(ResourceConfig(max_concurrent_api_calls=1, acquire_timeout=0.01))

        async def hold():
            async with manager.api_call():
                await asyncio.sleep(0.05)

        await asyncio.gather(hold(), hold())
        assert manager.total_api_calls == 2
        assert manager.rejected_requests == 0

    async def test_optional_timeout_rejects(self):
        manager = ResourceManager(ResourceConfig(max_concurrent_api_calls=1))
        async with manager.api_call():
            with pytest.raises(ResourceLimitError):
                async with manager.api_call(timeout=0.01):
                    pass

    def test_status(self, resource_config):
        status = ResourceManager(resource_config).get_status()
        assert status["max_api_calls"] == 4
        assert status["max_pipelines"] == 2
        assert status["active_pipelines"] == 0
