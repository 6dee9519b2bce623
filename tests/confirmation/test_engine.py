"""End-to-end tests for ConfirmationEngine."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest

from payconfirm.confirmation.domain.enums import IngestionOutcome, SourceChannel
from payconfirm.confirmation.domain.events import (
    ManualReviewRequestedEvent,
    PaymentConfirmedEvent,
    PaymentExpiredEvent,
)
from payconfirm.confirmation.engine import ConfirmationEngine
from payconfirm.confirmation.ingestion import (
    IngestionAdapter,
    InboxMessage,
    PollingInboxAdapter,
    SimulatedPaymentAdapter,
)
from payconfirm.exceptions import ConfigurationError, ValidationError
from payconfirm.utils.logging import get_correlation_id

pytestmark = pytest.mark.unit

SCENARIO_A_TEXT = "You have received Rs. 250.00 via UPI. Txn successful."


def confirmed(events):
    return [e for e in events if isinstance(e, PaymentConfirmedEvent)]


@pytest.fixture
def make_engine(test_settings, store, bus, clock):
    """Build an engine with overridden settings."""
    engines = []

    def factory(**overrides):
        settings = test_settings.model_copy(update=overrides)
        engine = ConfirmationEngine(settings, store=store, bus=bus, clock=clock)
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.stop()


class TestScenarios:
    def test_notification_confirms_recent_payment(self, engine, published, clock):
        """Scenario A: matching text within a minute confirms automatically."""
        engine.track_payment("P1", "250.00", "merchant@upi", "Asha")
        clock.advance(seconds=40)

        outcome = engine.deliver_event(SCENARIO_A_TEXT, SourceChannel.NOTIFICATION)

        assert outcome == IngestionOutcome.CONFIRMED
        assert engine.registry.get("P1") is None

        event = confirmed(published)[0]
        assert event.payment_id == "P1"
        assert event.amount == Decimal("250.00")
        assert event.auto_confirmed is True
        assert event.match_confidence >= 85
        assert event.match_confidence == 97

        record = engine.payment_history()[0]
        assert record.payment_id == "P1"
        assert record.customer_label == "Asha"

    def test_amount_mismatch_leaves_payment_pending(self, engine, published, clock):
        """Scenario B: 499 never confirms a 500 payment."""
        engine.track_payment("P2", 500, "merchant@upi")
        clock.advance(seconds=10)

        outcome = engine.deliver_event("You have received Rs. 499.00 via UPI.", "notification")

        assert outcome == IngestionOutcome.NO_MATCH
        assert engine.registry.get("P2") is not None
        assert confirmed(published) == []

    def test_late_text_is_ignored_and_entry_swept_later(self, engine, published, clock):
        """Scenario C: 12 minutes is outside the window; eviction waits for 30 minutes."""
        engine.track_payment("P3", 100, "merchant@upi")
        clock.advance(minutes=12)

        outcome = engine.deliver_event("You have received Rs. 100.00 via UPI.", "notification")

        assert outcome == IngestionOutcome.NO_MATCH
        assert "P3" in engine.registry

        clock.advance(minutes=17)
        assert engine.sweep() == []
        assert "P3" in engine.registry

        clock.advance(minutes=2)
        assert [p.payment_id for p in engine.sweep()] == ["P3"]
        assert "P3" not in engine.registry
        assert isinstance(published[-1], PaymentExpiredEvent)

    def test_tie_break_prefers_older_payment(self, engine, published, clock):
        """Scenario D: two equal amounts, the older entry wins."""
        engine.track_payment("P4", 300, "merchant@upi")
        clock.advance(seconds=5)
        engine.track_payment("P5", 300, "merchant@upi")
        clock.advance(seconds=5)

        outcome = engine.deliver_event("You have received Rs. 300.00 via UPI.", "notification")

        assert outcome == IngestionOutcome.CONFIRMED
        event = confirmed(published)[0]
        assert event.payment_id == "P4"
        assert event.ambiguous is True
        assert "P5" in engine.registry

    def test_manual_confirm_unknown_id(self, engine, published):
        """Scenario E: unknown id returns False and changes nothing."""
        engine.track_payment("P7", 75, "merchant@upi")

        assert engine.manual_confirm("P6", 75) is False
        assert published == []
        assert engine.active_payments_count() == 1
        assert engine.payment_history() == []


class TestPipeline:
    def test_text_without_payment_signal(self, engine):
        engine.track_payment("P1", 10, "merchant@upi")

        assert engine.deliver_event("Your OTP is 1234", "sms") == IngestionOutcome.NO_CANDIDATE

    def test_unknown_channel_raises(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.deliver_event(SCENARIO_A_TEXT, "email")

        assert exc_info.value.context["field"] == "source_channel"

    def test_duplicate_event_key_is_dropped(self, engine, clock):
        engine.track_payment("P1", 250, "merchant@upi")
        engine.track_payment("P2", 250, "merchant@upi")

        first = engine.deliver_event(SCENARIO_A_TEXT, "notification", event_key="n-1")
        second = engine.deliver_event(SCENARIO_A_TEXT, "notification", event_key="n-1")

        assert first == IngestionOutcome.CONFIRMED
        assert second == IngestionOutcome.DUPLICATE
        assert "P2" in engine.registry

    def test_dedupe_window_forgets_oldest_keys(self, make_engine):
        engine = make_engine(dedupe_window=2)

        for key in ("a", "b", "c"):
            engine.deliver_event("hello", "sms", event_key=key)

        assert engine.deliver_event("hello", "sms", event_key="a") == IngestionOutcome.NO_CANDIDATE
        assert engine.deliver_event("hello", "sms", event_key="c") == IngestionOutcome.DUPLICATE
        assert engine.get_status()["remembered_event_keys"] == 2

    def test_sms_sender_fills_missing_payer(self, engine, published, clock):
        engine.track_payment("P1", 250, "merchant@upi")
        clock.advance(seconds=20)

        outcome = engine.deliver_event(
            "Rs.250.00 credited to a/c XX1234 via UPI. UPI Ref No 412345678901.",
            SourceChannel.SMS,
            sender="VM-HDFCBK",
        )

        assert outcome == IngestionOutcome.CONFIRMED
        event = confirmed(published)[0]
        assert event.counterparty_label == "VM-HDFCBK"
        assert event.reference == "412345678901"
        assert event.source_channel == "sms"

    def test_payer_in_text_wins_over_sender(self, engine, published):
        engine.track_payment("P1", 250, "merchant@upi")

        engine.deliver_event(
            "You received Rs. 250.00 from Ravi Kumar via UPI.", "sms", sender="AD-PAYTM"
        )

        assert confirmed(published)[0].counterparty_label == "Ravi Kumar"

    def test_review_band_requests_manual_review(self, make_engine, published, clock):
        engine = make_engine(auto_confirm_threshold=99, manual_review_threshold=60)
        engine.track_payment("P1", 250, "merchant@upi")
        clock.advance(seconds=30)

        outcome = engine.deliver_event(SCENARIO_A_TEXT, "notification")

        assert outcome == IngestionOutcome.REVIEW_REQUESTED
        assert "P1" in engine.registry
        assert isinstance(published[0], ManualReviewRequestedEvent)
        assert published[0].match_confidence == 97
        assert engine.payment_history() == []

    def test_low_confidence_match_is_ignored(self, make_engine, published):
        engine = make_engine(auto_confirm_threshold=100, manual_review_threshold=98)
        engine.track_payment("P1", 250, "merchant@upi")

        outcome = engine.deliver_event(SCENARIO_A_TEXT, "notification")

        assert outcome == IngestionOutcome.IGNORED
        assert "P1" in engine.registry
        assert published == []

    def test_already_resolved_when_entry_vanishes(self, engine, mocker):
        engine.track_payment("P1", 250, "merchant@upi")
        mocker.patch.object(engine.dispatcher, "confirm_automatic", return_value=None)

        outcome = engine.deliver_event(SCENARIO_A_TEXT, "notification")

        assert outcome == IngestionOutcome.ALREADY_RESOLVED

    def test_explicit_observed_at_is_used(self, engine, clock):
        engine.track_payment("P1", 250, "merchant@upi")
        late = clock.now + timedelta(minutes=11)

        outcome = engine.deliver_event(SCENARIO_A_TEXT, "notification", observed_at=late)

        assert outcome == IngestionOutcome.NO_MATCH

    def test_naive_observed_at_is_read_as_local_time(self, engine, clock):
        engine.track_payment("P1", 250, "merchant@upi")
        local_naive = (clock.now + timedelta(seconds=30)).astimezone().replace(tzinfo=None)

        outcome = engine.deliver_event(SCENARIO_A_TEXT, "notification", observed_at=local_naive)

        assert outcome == IngestionOutcome.CONFIRMED

    def test_failed_event_key_can_be_redelivered(self, engine, mocker):
        """Test an event that fails mid-pipeline is not remembered as seen."""
        engine.track_payment("P1", 250, "merchant@upi")
        mocker.patch.object(
            engine.dispatcher,
            "confirm_automatic",
            side_effect=[RuntimeError("store exploded"), Mock()],
        )

        with pytest.raises(RuntimeError):
            engine.deliver_event(SCENARIO_A_TEXT, "notification", event_key="n-9")

        assert engine.get_status()["remembered_event_keys"] == 0
        outcome = engine.deliver_event(SCENARIO_A_TEXT, "notification", event_key="n-9")
        assert outcome == IngestionOutcome.CONFIRMED

    def test_correlation_id_is_bound_per_event(self, engine):
        seen = []
        engine.subscribe(lambda e: seen.append(get_correlation_id()), PaymentConfirmedEvent)
        engine.track_payment("P1", 250, "merchant@upi")

        engine.deliver_event(SCENARIO_A_TEXT, "notification", event_key="notif-77")

        assert seen == ["notif-77"]
        assert get_correlation_id() is None

    def test_manual_confirm_tracked_payment(self, engine, published):
        engine.track_payment("P6", 75, "merchant@upi")

        assert engine.manual_confirm("P6", 75) is True

        assert engine.active_payments_count() == 0
        assert engine.payment_history()[0].manual is True
        assert confirmed(published)[0].manual is True

    def test_untrack_payment(self, engine):
        engine.track_payment("P1", 250, "merchant@upi")

        assert engine.untrack_payment("P1").payment_id == "P1"
        assert engine.deliver_event(SCENARIO_A_TEXT, "notification") == IngestionOutcome.NO_MATCH

    def test_pending_payments_oldest_first(self, engine, clock):
        engine.track_payment("B", 1, "merchant@upi")
        clock.advance(seconds=1)
        engine.track_payment("A", 1, "merchant@upi")

        assert [p.payment_id for p in engine.pending_payments()] == ["B", "A"]

    def test_audit_listener_can_be_disabled(self, make_engine, bus):
        make_engine(audit_log_events=False)

        assert bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_deliver_event_async(self, engine, published):
        engine.track_payment("P1", 250, "merchant@upi")

        outcome = await engine.deliver_event_async(
            SCENARIO_A_TEXT, "notification", event_key="async-1"
        )

        assert outcome == IngestionOutcome.CONFIRMED
        assert len(confirmed(published)) == 1


class TestAdapters:
    def test_simulator_end_to_end(self, engine, published, clock):
        simulator = SimulatedPaymentAdapter()
        engine.register_adapter(simulator)
        engine.track_payment("order-42", "150.00", "merchant@upi")

        with engine:
            clock.advance(seconds=15)
            outcome = simulator.simulate_notification("150.00", app="phonepe", sender_name="Meera")

        assert outcome == IngestionOutcome.CONFIRMED
        event = confirmed(published)[0]
        assert event.source_app == "PhonePe"
        assert event.counterparty_label == "Meera"
        assert not simulator.started

    def test_overlapping_polls_confirm_once(self, engine, published, clock):
        engine.track_payment("P1", 250, "merchant@upi")
        engine.track_payment("P2", 250, "merchant@upi")
        message = InboxMessage(
            body="Rs.250.00 credited to a/c XX12 via UPI. UPI Ref No 412345678901",
            received_at=clock.now + timedelta(seconds=20),
            sender="VM-SBIUPI",
            message_id="sms-1",
        )
        poller = PollingInboxAdapter(
            Mock(return_value=[message]), interval=timedelta(hours=1), clock=clock
        )
        engine.register_adapter(poller)
        engine.start()

        poller.poll_once()
        poller.poll_once()

        assert len(confirmed(published)) == 1
        assert "P2" in engine.registry

    def test_adapter_registered_while_running_is_started(self, engine):
        adapter = Mock(spec=IngestionAdapter)
        adapter.name = "mock"
        engine.start()

        engine.register_adapter(adapter)

        adapter.start.assert_called_once_with(engine.deliver_event)

    def test_failing_adapter_stop_does_not_block_shutdown(self, engine):
        adapter = Mock(spec=IngestionAdapter)
        adapter.name = "broken"
        adapter.stop.side_effect = RuntimeError("stuck")
        engine.register_adapter(adapter)
        engine.start()

        engine.stop()

        assert not engine.running
        assert not engine.sweeper.running


class TestLifecycle:
    def test_status(self, engine, clock):
        engine.track_payment("P1", 10, "merchant@upi")
        engine.register_adapter(SimulatedPaymentAdapter())
        engine.start()
        engine.sweep()

        status = engine.get_status()

        assert status["running"] is True
        assert status["pending_payments"] == 1
        assert status["adapters"] == ["simulator"]
        assert status["sweeper_running"] is True
        assert status["last_sweep_time"] == clock.now.isoformat()
        assert status["match_windows"] == {"notification": 600, "sms": 600}

    def test_start_twice_and_stop_twice(self, engine):
        engine.start()
        engine.start()
        engine.stop()
        engine.stop()

        assert not engine.running

    def test_default_store_is_json_file(self, test_settings):
        engine = ConfirmationEngine(test_settings)
        engine.track_payment("P1", 250, "merchant@upi")

        engine.deliver_event(SCENARIO_A_TEXT, "notification")

        assert test_settings.confirmation_log_path.exists()
        assert engine.payment_history()[0].payment_id == "P1"

    @pytest.mark.parametrize(
        ("overrides", "setting"),
        [
            (
                {"auto_confirm_threshold": 60, "manual_review_threshold": 80},
                "manual_review_threshold",
            ),
            ({"stale_after_seconds": 30}, "stale_after_seconds"),
        ],
    )
    def test_inconsistent_copied_settings_are_rejected(
        self, test_settings, store, bus, clock, overrides, setting
    ):
        settings = test_settings.model_copy(update=overrides)

        with pytest.raises(ConfigurationError) as exc_info:
            ConfirmationEngine(settings, store=store, bus=bus, clock=clock)

        assert exc_info.value.context["setting"] == setting
