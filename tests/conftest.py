"""
Shared test fixtures.

Async tests run on asyncio through anyio's pytest plugin. Nothing here
touches the network: the object store and the gateway are both replaced
by in-process fakes.
"""

from datetime import datetime, timezone

import pytest

from reelvault.core.retry import RetryPolicy
from reelvault.infrastructure.storage.gateway import StoreConfig


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store_config() -> StoreConfig:
    return StoreConfig(
        account_id="acct123",
        access_key_id="AKIDEXAMPLE",
        secret_access_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        bucket_name="videos",
    )


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    """Retry policy that records its delays instead of sleeping."""
    slept: list[float] = []

    async def record(delay: float) -> None:
        slept.append(delay)

    policy = RetryPolicy(max_attempts=3, initial_delay=0.5, max_delay=8.0, sleep=record)
    policy.slept = slept
    return policy
