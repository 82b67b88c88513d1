"""Shared fixtures and sample builders for workout core tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest

from src.workouts.aggregation.aggregator import SessionAggregator
from src.workouts.base import (
    ActivityKind,
    ActivityWindow,
    BiometricKind,
    BiometricSample,
    LocationType,
    RoutePoint,
)
from src.workouts.biometrics.adapter import BiometricQueryAdapter
from src.workouts.biometrics.memory import InMemoryBiometricStore
from src.workouts.config_loader import SessionConfig, load_session_config
from src.workouts.dispatch import SerialContext

# Canonical test identifiers
TEST_ACTIVITY_ID = UUID("12345678-1234-5678-1234-567812345678")
TEST_START = datetime(2026, 2, 23, 7, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = TEST_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


async def drain(rounds: int = 25) -> None:
    """Let queued loop callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------


def at(seconds: float) -> datetime:
    return TEST_START + timedelta(seconds=seconds)


def samples(kind: BiometricKind, points: Iterable[tuple[float, float]]) -> list[BiometricSample]:
    """Build samples from ``(seconds_after_start, value)`` pairs."""
    return [BiometricSample(kind=kind, timestamp=at(t), value=v) for t, v in points]


def route_point(seconds: float, altitude: float | None, accuracy: float = 3.0) -> RoutePoint:
    return RoutePoint(
        latitude=51.5 + seconds * 1e-5,
        longitude=-0.12,
        timestamp=at(seconds),
        vertical_accuracy=accuracy,
        altitude=altitude,
    )


def window(seconds: float, location: LocationType = LocationType.OUTDOOR) -> ActivityWindow:
    return ActivityWindow(
        activity_id=TEST_ACTIVITY_ID,
        activity=ActivityKind.RUN,
        location=location,
        start=TEST_START,
        end=at(seconds),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def session_config() -> SessionConfig:
    """Load the real session config for tests."""
    return load_session_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryBiometricStore:
    return InMemoryBiometricStore(route_batch_size=2)


@pytest.fixture
def context() -> SerialContext:
    """Serialized context bound lazily to the test's event loop."""
    return SerialContext()


@pytest.fixture
def adapter(store: InMemoryBiometricStore, context: SerialContext) -> BiometricQueryAdapter:
    return BiometricQueryAdapter(store, context)


@pytest.fixture
def aggregator(adapter: BiometricQueryAdapter, session_config: SessionConfig) -> SessionAggregator:
    return SessionAggregator(adapter, session_config)


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Mock httpx.AsyncClient for testing the HTTP transport without a peer."""
    client = MagicMock()
    response = MagicMock()
    response.status_code = 200
    response.raise_for_status = MagicMock()
    response.json = MagicMock(return_value={})
    client.get = AsyncMock(return_value=response)
    client.post = AsyncMock(return_value=response)
    return client
