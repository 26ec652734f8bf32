"""Shared fixtures.

Provides:
- An in-memory backend (store, feed, identity) seeded with one admin and two reps
- A SalesViewModel wired to that backend with a fixed clock in Q4 2026
- Explicit Settings that never read the process environment or a .env file
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from tenacity import wait_none

from src.salesboard.config import Settings
from src.salesboard.sales.aggregator import SalesViewModel
from tests.fakes import ADMIN, NOW, REP_A, REP_B, FakeBackend


@pytest.fixture
def backend() -> FakeBackend:
    """Backend with profiles only; tests add the deals they need."""
    return FakeBackend(profiles=[ADMIN, REP_A, REP_B])


@pytest_asyncio.fixture
async def view_model(backend: FakeBackend) -> AsyncGenerator[SalesViewModel, None]:
    """Uninitialized view model; disposed after the test."""
    vm = SalesViewModel(
        backend.store,
        backend.feed,
        clock=lambda: NOW,
        resync_wait=wait_none(),
    )
    yield vm
    await vm.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SUPABASE_URL="https://project-ref.supabase.co",
        SUPABASE_ANON_KEY="anon-test-key",
        _env_file=None,
    )
