"""
Pytest configuration for plancraft tests.

`src/` is put on the path by `pythonpath` in pyproject.toml; this module only
holds shared fixtures.
"""

from typing import Callable

import httpx
import pytest

from adapters.endpoint_registry import EndpointRegistry
from adapters.request_executor import RequestExecutor
from adapters.state_store import InMemoryStateStore
from core.config import AppSettings

BASE_URL = "https://billing.test/api/v1"


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        backend_base_url=BASE_URL,
        http_max_retries=2,
        http_backoff_base_seconds=0.5,
        http_backoff_max_seconds=4.0,
        http_backoff_jitter_seconds=0,
    )


@pytest.fixture
def registry(settings) -> EndpointRegistry:
    return EndpointRegistry(settings.backend_base_url)


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


class SleepRecorder:
    """Replaces asyncio.sleep so backoff never waits."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_executor(settings, sleeps) -> Callable[..., RequestExecutor]:
    """Build a RequestExecutor over an httpx.MockTransport handler."""

    def factory(handler, **kwargs) -> RequestExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RequestExecutor(client, settings, sleep=sleeps, **kwargs)

    return factory
