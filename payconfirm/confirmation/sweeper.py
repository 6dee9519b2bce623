"""Cleanup sweeper: evicts pending payments nobody confirmed.

Runs ``sweep`` every ``interval`` on an APScheduler ``BackgroundScheduler``.
Each evicted entry is published as a ``PaymentExpiredEvent`` so UIs waiting
on it can close.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from ..events.base import SubscriptionBus
from ..utils.logging import get_logger
from . import metrics
from .domain.events import PaymentExpiredEvent
from .domain.models import PendingPayment
from .registry import Clock, PaymentRegistry, utc_now

logger = get_logger(__name__)

DEFAULT_STALE_AFTER = timedelta(minutes=30)
DEFAULT_SWEEP_INTERVAL = timedelta(seconds=60)


class CleanupSweeper:
    """Periodically evict stale registry entries.

    Example:
        >>> sweeper = CleanupSweeper(registry, bus)
        >>> sweeper.start()
        >>> ...
        >>> sweeper.stop()
    """

    def __init__(
        self,
        registry: PaymentRegistry,
        bus: SubscriptionBus,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        interval: timedelta = DEFAULT_SWEEP_INTERVAL,
        clock: Clock = utc_now,
    ) -> None:
        if stale_after <= timedelta(0):
            raise ValueError(f"stale_after must be positive, got {stale_after}")
        if interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")

        self.registry = registry
        self.bus = bus
        self.stale_after = stale_after
        self.interval = interval
        self._clock = clock

        self.scheduler: BackgroundScheduler | None = None
        self.last_sweep_time: datetime | None = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None

    def sweep(self, now: datetime | None = None) -> list[PendingPayment]:
        """Evict entries strictly older than ``stale_after``.

        Returns:
            The evicted entries (status ``EXPIRED``)
        """
        now = now or self._clock()
        self.last_sweep_time = now

        expired = self.registry.evict_older_than(now - self.stale_after)
        if not expired:
            return []

        logger.info(
            "stale_payments_evicted",
            count=len(expired),
            payment_ids=[e.payment_id for e in expired],
        )
        metrics.record_expired(len(expired))
        metrics.update_pending_count(self.registry.count())

        for entry in expired:
            self.bus.publish(
                PaymentExpiredEvent(
                    payment_id=entry.payment_id,
                    expected_amount=entry.expected_amount,
                    created_at=entry.created_at,
                    age_seconds=int(entry.age_at(now).total_seconds()),
                )
            )
        return expired

    def start(self) -> None:
        if self.running:
            logger.warning("sweeper_already_running")
            return

        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            func=self._run_sweep,
            trigger=IntervalTrigger(seconds=self.interval.total_seconds()),
            id="pending_payment_sweep",
            name="Evict Stale Pending Payments",
            replace_existing=True,
        )
        self.scheduler.start()

        logger.info(
            "sweeper_started",
            interval_seconds=self.interval.total_seconds(),
            stale_after_seconds=self.stale_after.total_seconds(),
        )

    def stop(self) -> None:
        if self.scheduler is None:
            return

        self.scheduler.shutdown(wait=True)
        self.scheduler = None
        logger.info("sweeper_stopped")

    def _run_sweep(self) -> None:
        try:
            self.sweep()
        except Exception as e:
            logger.error("sweep_failed", error=str(e), exc_info=True)
