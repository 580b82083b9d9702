from __future__ import annotations

import pytest

from quotacore.core.config import get_settings
from quotacore.providers.storage.memory import InMemoryStorage
from quotacore.services.rate_limiter import RateLimiterEngine
from quotacore.tests.utils.builders import MutableClock


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    # Clear settings cache between tests to avoid leaking env overrides.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def engine(storage: InMemoryStorage, clock: MutableClock) -> RateLimiterEngine:
    return RateLimiterEngine(storage=storage, time_provider=clock)
