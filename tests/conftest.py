"""
Pytest configuration and global fixtures.

This module provides shared fixtures used across all tests.
"""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from payconfirm.confirmation.dispatcher import ConfirmationDispatcher
from payconfirm.confirmation.engine import ConfirmationEngine
from payconfirm.confirmation.registry import PaymentRegistry
from payconfirm.confirmation.storage import InMemoryConfirmationStore
from payconfirm.events.base import BaseEvent, SubscriptionBus
from payconfirm.utils import config as config_module
from payconfirm.utils.config import Settings

T0 = datetime(2025, 3, 14, 10, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock, injected wherever components take ``clock``."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary directories."""
    return Settings(
        data_dir=tmp_path / "data",
        notification_match_window_seconds=600,
        sms_match_window_seconds=600,
        max_clock_skew_seconds=5,
        auto_confirm_threshold=85,
        manual_review_threshold=60,
        stale_after_seconds=1800,
        sweep_interval_seconds=60,
        dedupe_window=100,
        history_cap=50,
        audit_log_events=True,
        prometheus_enabled=False,
    )


@pytest.fixture
def registry(clock: FakeClock) -> PaymentRegistry:
    return PaymentRegistry(clock=clock)


@pytest.fixture
def store() -> InMemoryConfirmationStore:
    return InMemoryConfirmationStore(cap=50)


@pytest.fixture
def bus() -> SubscriptionBus:
    return SubscriptionBus()


@pytest.fixture
def published(bus: SubscriptionBus) -> list[BaseEvent]:
    """Every event published on ``bus``, in order."""
    events: list[BaseEvent] = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def dispatcher(
    registry: PaymentRegistry,
    store: InMemoryConfirmationStore,
    bus: SubscriptionBus,
    clock: FakeClock,
) -> ConfirmationDispatcher:
    return ConfirmationDispatcher(registry, store, bus, clock)


@pytest.fixture
def engine(
    test_settings: Settings,
    store: InMemoryConfirmationStore,
    bus: SubscriptionBus,
    clock: FakeClock,
) -> Generator[ConfirmationEngine, None, None]:
    engine = ConfirmationEngine(test_settings, store=store, bus=bus, clock=clock)
    yield engine
    engine.stop()


@pytest.fixture
def reset_settings_cache() -> Generator[None, None, None]:
    """Drop the process-wide settings before and after a test."""
    config_module._settings = None
    yield
    config_module._settings = None
