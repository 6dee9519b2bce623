"""Tests for ingestion adapters."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from payconfirm.confirmation.domain.enums import IngestionOutcome, SourceChannel
from payconfirm.confirmation.ingestion import (
    InboxMessage,
    PollingInboxAdapter,
    SimulatedPaymentAdapter,
    generate_upi_reference,
)
from payconfirm.confirmation.parser import PaymentTextParser
from payconfirm.exceptions import IngestionError

pytestmark = pytest.mark.unit


class TestSimulatedPaymentAdapter:
    def test_not_started_raises(self):
        with pytest.raises(IngestionError):
            SimulatedPaymentAdapter().simulate_notification(10)

    def test_notification_delivered_to_sink(self):
        sink = Mock(return_value=IngestionOutcome.NO_MATCH)
        simulator = SimulatedPaymentAdapter()
        simulator.start(sink)

        outcome = simulator.simulate_notification("250", app="phonepe", reference="998877")

        assert outcome == IngestionOutcome.NO_MATCH
        args, kwargs = sink.call_args
        assert args[0].startswith("PhonePe\n")
        assert "₹250.00" in args[0]
        assert args[1] == SourceChannel.NOTIFICATION
        assert kwargs["event_key"] == "phonepe_998877"

    def test_unknown_app_raises(self):
        simulator = SimulatedPaymentAdapter()
        simulator.start(Mock())

        with pytest.raises(IngestionError):
            simulator.simulate_notification(10, app="venmo")

    def test_sms_carries_sender(self):
        sink = Mock()
        simulator = SimulatedPaymentAdapter()
        simulator.start(sink)

        simulator.simulate_sms(75.25, sender="Bank", reference="1234")

        args, kwargs = sink.call_args
        assert args[1] == SourceChannel.SMS
        assert kwargs["sender"] == "Bank"
        assert "UPI Ref No: 1234" in args[0]

    def test_stop_detaches_sink(self):
        simulator = SimulatedPaymentAdapter()
        simulator.start(Mock())
        simulator.stop()

        assert not simulator.started
        with pytest.raises(IngestionError):
            simulator.simulate_sms(10)

    @pytest.mark.parametrize("app", ["gpay", "phonepe", "paytm", "bhim", "generic"])
    def test_every_notification_template_parses(self, app):
        texts = []
        simulator = SimulatedPaymentAdapter()
        simulator.start(lambda text, *args, **kwargs: texts.append(text))

        simulator.simulate_notification("150.00", app=app)

        candidate = PaymentTextParser().parse(texts[0])
        assert candidate is not None
        assert str(candidate.amount) == "150.00"

    def test_notification_reference_is_extracted(self):
        texts = []
        simulator = SimulatedPaymentAdapter()
        simulator.start(lambda text, *args, **kwargs: texts.append(text))

        simulator.simulate_notification(10, app="gpay", reference="412345678901")

        assert PaymentTextParser().parse(texts[0]).reference == "412345678901"

    @pytest.mark.parametrize("sender", ["GPay", "PhonePe", "Paytm", "Bank", "BHIM"])
    def test_every_sms_template_parses(self, sender):
        texts = []
        simulator = SimulatedPaymentAdapter()
        simulator.start(lambda text, *args, **kwargs: texts.append(text))

        simulator.simulate_sms("300.00", sender=sender)

        candidate = PaymentTextParser().parse(texts[0], SourceChannel.SMS)
        assert candidate is not None
        assert str(candidate.amount) == "300.00"

    def test_bank_sms_ignores_balance(self):
        texts = []
        simulator = SimulatedPaymentAdapter()
        simulator.start(lambda text, *args, **kwargs: texts.append(text))

        simulator.simulate_bank_sms(42)

        assert str(PaymentTextParser().parse(texts[0], SourceChannel.SMS).amount) == "42.00"

    def test_reference_format(self):
        ref = generate_upi_reference()

        assert len(ref) == 12
        assert ref.isdigit()


class TestPollingInboxAdapter:
    @pytest.fixture
    def messages(self, clock):
        return [
            InboxMessage(
                body="Rs.250.00 credited to a/c XX12 via UPI",
                received_at=clock.now,
                sender="VM-HDFCBK",
                message_id="sms-1",
            ),
            InboxMessage(body="Your OTP is 1234", received_at=clock.now, sender="VM-OTP"),
        ]

    def test_poll_delivers_with_lookback(self, clock, messages):
        fetch = Mock(return_value=messages)
        sink = Mock()
        poller = PollingInboxAdapter(fetch, lookback=timedelta(minutes=3), clock=clock)
        poller._sink = sink

        delivered = poller.poll_once()

        assert delivered == 2
        fetch.assert_called_once_with(clock.now - timedelta(minutes=3))
        args, kwargs = sink.call_args_list[0]
        assert args == (messages[0].body, SourceChannel.SMS, messages[0].received_at)
        assert kwargs == {"event_key": "sms-1", "sender": "VM-HDFCBK"}

    def test_poll_failure_is_logged_and_counted(self, clock):
        fetch = Mock(side_effect=RuntimeError("permission denied"))
        poller = PollingInboxAdapter(fetch, clock=clock)
        poller._sink = Mock()

        assert poller.poll_once() == 0
        assert poller.poll_once() == 0
        assert poller.poll_failures == 2

    def test_failing_message_does_not_abort_batch(self, clock, messages):
        third = InboxMessage(body="received Rs 10", received_at=clock.now, sender="X")
        sink = Mock(side_effect=[RuntimeError("engine down"), None, None])
        poller = PollingInboxAdapter(Mock(return_value=[*messages, third]), clock=clock)
        poller._sink = sink

        delivered = poller.poll_once()

        assert delivered == 2
        assert sink.call_count == 3
        assert sink.call_args_list[2].args[0] == "received Rs 10"
        assert poller.message_failures == 1
        assert poller.poll_failures == 0

    def test_poll_without_start_raises(self, clock):
        with pytest.raises(IngestionError):
            PollingInboxAdapter(Mock(return_value=[]), clock=clock).poll_once()

    def test_event_key_without_message_id_is_stable(self, clock):
        a = InboxMessage(body="received Rs 10", received_at=clock.now, sender="X")
        b = InboxMessage(body="received Rs 10", received_at=clock.now, sender="X")
        c = InboxMessage(body="received Rs 11", received_at=clock.now, sender="X")

        assert a.event_key == b.event_key
        assert a.event_key != c.event_key

    def test_start_schedules_polling(self, clock):
        poller = PollingInboxAdapter(
            Mock(return_value=[]), interval=timedelta(seconds=2), clock=clock
        )
        poller.start(Mock())
        try:
            job = poller.scheduler.get_job("inbox_poll_inbox")
            assert job.trigger.interval == timedelta(seconds=2)
        finally:
            poller.stop()

        assert poller.scheduler is None

    @pytest.mark.parametrize(
        "kwargs", [{"interval": timedelta(0)}, {"lookback": timedelta(seconds=-1)}]
    )
    def test_invalid_durations(self, kwargs):
        with pytest.raises(ValueError):
            PollingInboxAdapter(Mock(), **kwargs)
