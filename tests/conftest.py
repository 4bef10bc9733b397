"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Generator
from unittest.mock import AsyncMock

import pytest

# Set test environment
os.environ.setdefault("BATCHOPS_LOG_LEVEL", "DEBUG")
os.environ.setdefault("BATCHOPS_BACKOFF_BASE_MS", "0")


@pytest.fixture
def mock_settings() -> Generator:
    """Clear cached settings around a test."""
    from batchops.core.config import clear_settings_cache

    clear_settings_cache()

    yield

    clear_settings_cache()


@pytest.fixture
def sample_operations() -> list:
    """Provide conflict-free operations with a dependency chain."""
    from batchops.operations.models import Operation

    return [
        Operation(target_id="user-1", data={"role": "admin"}),
        Operation(target_id="user-2", data={"team": "core"}, depends_on=["user-1"]),
        Operation(target_id="user-3", data={"active": True}, depends_on=["user-2"]),
    ]


@pytest.fixture
def sample_records() -> dict:
    """Provide user records matching sample_operations."""
    return {
        "user-1": {"name": "Ada", "role": "viewer", "profile": {"city": "London", "lang": "en"}},
        "user-2": {"name": "Alan", "team": "research"},
        "user-3": {"name": "Grace", "active": False},
    }


@pytest.fixture
def fast_options():
    """Run options without backoff delays."""
    from batchops.operations.models import BatchOptions

    return BatchOptions(backoff_base_ms=0)


@pytest.fixture
def update_fn() -> AsyncMock:
    """Provide an update capability that echoes the applied data."""

    async def apply(target_id, data, merge_strategy):
        return {"id": target_id, **data}

    return AsyncMock(side_effect=apply)


@pytest.fixture
def store(sample_records: dict):
    """Provide an in-memory user store."""
    from batchops.store import InMemoryUserStore

    return InMemoryUserStore(sample_records)


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
