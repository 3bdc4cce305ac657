"""Fixtures for service tests.

Fixtures use function scope; background maintenance is disabled so tests
drive it explicitly.
"""

from collections.abc import AsyncGenerator

import pytest

from hinata.config import Config, MaintenanceConfig, TagStoreConfig
from hinata.services.engine import HiNATAEngine


@pytest.fixture
def engine_config() -> Config:
    """Configuration without background maintenance."""
    return Config(maintenance=MaintenanceConfig(enabled=False))


@pytest.fixture
async def engine(engine_config) -> AsyncGenerator[HiNATAEngine, None]:
    """Initialized engine, closed after the test."""
    hinata = HiNATAEngine(engine_config)
    await hinata.initialize()
    yield hinata
    await hinata.close()


@pytest.fixture
def bare_engine() -> HiNATAEngine:
    """Uninitialized engine without seeded system tags."""
    return HiNATAEngine(
        Config(
            maintenance=MaintenanceConfig(enabled=False),
            tags=TagStoreConfig(seed_system_tags=False),
        )
    )
