"""
Tests for the event envelope, the in-memory broker and idempotent consumers.

- Envelope: required payload fields, JSON round trip of the wire shape
- Broker: routing by type, NACK -> dead letter without requeue
- Consumer: duplicate delivery acked without a second side effect
- Publisher: broker outage after commit is logged, not raised
"""
import json
import logging
from unittest.mock import MagicMock, patch

import pytest

from lapor.errors import DependencyUnavailable
from lapor.models.db_models import ProcessedEventDB, ReportStatus
from lapor.models.events import DomainEvent, EventType
from lapor.services.events.broker import DeliveryOutcome, InMemoryBroker, KafkaBroker, build_broker
from lapor.services.events.consumer import IdempotentConsumer
from lapor.services.events.publisher import EventPublisher


def make_event(event_type=EventType.REPORT_CREATED, **payload):
    payload.setdefault("reportId", "report-1")
    payload.setdefault("referenceNumber", "LP-2026-000001")
    return DomainEvent(type=event_type, source_component="report-store", payload=payload)


class CountingConsumer(IdempotentConsumer):
    """Records each processed event id; optionally fails."""

    name = "counting"
    event_types = (EventType.REPORT_CREATED, EventType.REPORT_UPDATED)

    def __init__(self, session_factory, fail=False, **kwargs):
        super().__init__(session_factory, **kwargs)
        self.fail = fail
        self.processed = []

    def process(self, db, event):
        if self.fail:
            raise RuntimeError("downstream exploded")
        self.processed.append(event.event_id)
        return []


# =============================================================================
# TEST: EVENT ENVELOPE
# =============================================================================

class TestDomainEvent:

    def test_wire_shape(self):
        event = make_event(title="Lampu mati")
        data = json.loads(event.to_json())

        assert set(data) == {"eventId", "timestamp", "sourceComponent", "type", "payload"}
        assert data["type"] == "report.created"
        assert data["payload"]["title"] == "Lampu mati"

    def test_from_json_accepts_bytes(self):
        event = make_event()
        restored = DomainEvent.from_json(event.to_json().encode("utf-8"))

        assert restored == event
        assert restored.routing_key == "report.created"
        assert restored.report_id == "report-1"

    def test_required_fields(self):
        with pytest.raises(ValueError):
            DomainEvent(
                type=EventType.REPORT_CREATED,
                source_component="report-store",
                payload={"reportId": "report-1"},
            )

    def test_unique_ids(self):
        assert make_event().event_id != make_event().event_id

    def test_payload_cannot_change_after_publish(self):
        """The caller's dict and the event's payload are independent."""
        payload = {
            "reportId": "report-1",
            "referenceNumber": "LP-2026-000001",
            "changes": {"title": {"old": "a", "new": "b"}},
        }
        event = DomainEvent(type=EventType.REPORT_UPDATED, source_component="report-store", payload=payload)

        payload["reportId"] = "report-2"
        payload["changes"]["title"]["new"] = "c"

        assert event.report_id == "report-1"
        assert event.payload["changes"]["title"]["new"] == "b"
        with pytest.raises(TypeError):
            event.payload["reportId"] = "report-3"

        wire = event.to_dict()
        wire["payload"]["reportId"] = "report-4"
        assert event.report_id == "report-1"


# =============================================================================
# TEST: IN-MEMORY BROKER
# =============================================================================

class TestInMemoryBroker:

    def test_routes_by_event_type(self):
        broker = InMemoryBroker()
        created = MagicMock(return_value=DeliveryOutcome.ACK)
        escalated = MagicMock(return_value=DeliveryOutcome.ACK)
        broker.subscribe("created-q", [EventType.REPORT_CREATED], created)
        broker.subscribe("escalated-q", ["report.escalated"], escalated)

        event = make_event()
        broker.publish(event)

        created.assert_called_once_with(event)
        escalated.assert_not_called()
        assert broker.queues["created-q"].acked == [event.event_id]

    def test_nack_goes_to_dead_letter_without_requeue(self):
        broker = InMemoryBroker()
        handler = MagicMock(return_value=DeliveryOutcome.NACK)
        broker.subscribe("q", [EventType.REPORT_CREATED], handler)

        event = make_event()
        broker.publish(event)

        assert handler.call_count == 1
        assert broker.queues["q"].nacked == [event.event_id]
        assert len(broker.dead_letters) == 1
        assert broker.dead_letters[0].reason == "handler rejected event"

    def test_raising_handler_is_a_nack(self):
        broker = InMemoryBroker()
        broker.subscribe("bad", [EventType.REPORT_CREATED], MagicMock(side_effect=KeyError("x")))
        good = MagicMock(return_value=DeliveryOutcome.ACK)
        broker.subscribe("good", [EventType.REPORT_CREATED], good)

        broker.publish(make_event())

        assert broker.dead_letters[0].queue == "bad"
        assert broker.dead_letters[0].reason.startswith("handler error")
        good.assert_called_once()

    def test_held_events_delivered_on_drain(self):
        broker = InMemoryBroker(auto_deliver=False)
        handler = MagicMock(return_value=DeliveryOutcome.ACK)
        broker.subscribe("q", [EventType.REPORT_CREATED], handler)

        broker.publish(make_event())
        broker.publish(make_event())
        handler.assert_not_called()

        assert broker.drain() == 2
        assert handler.call_count == 2
        assert broker.pending == []

    def test_unavailable_broker_raises(self):
        broker = InMemoryBroker()
        broker.available = False

        with pytest.raises(DependencyUnavailable):
            broker.publish(make_event())
        assert broker.published == []

    def test_build_broker(self):
        assert isinstance(build_broker("memory"), InMemoryBroker)
        assert isinstance(build_broker("kafka"), KafkaBroker)
        with pytest.raises(ValueError):
            build_broker("carrier-pigeon")


# =============================================================================
# TEST: KAFKA CONSUME LOOP
# =============================================================================

def kafka_message(event):
    message = MagicMock()
    message.error.return_value = None
    message.value.return_value = event.to_json().encode("utf-8")
    message.topic.return_value = event.routing_key
    message.offset.return_value = 7
    return message


class TestKafkaConsumeLoop:
    """KafkaBroker._consume_loop with a mocked consumer."""

    def test_commit_failure_does_not_stop_the_loop(self, caplog):
        from confluent_kafka import KafkaException

        broker = KafkaBroker(poll_timeout_seconds=0.01)
        handler = MagicMock(return_value=DeliveryOutcome.ACK)
        broker.subscribe("routing", [EventType.REPORT_CREATED], handler)
        binding = broker._bindings["routing"]

        first, second = make_event(), make_event()
        polls = iter([kafka_message(first), kafka_message(second)])

        def poll(timeout):
            message = next(polls, None)
            if message is None:
                broker._stop.set()
            return message

        consumer = MagicMock()
        consumer.poll.side_effect = poll
        consumer.commit.side_effect = [KafkaException("coordinator not available"), None]

        with patch.object(KafkaBroker, "_new_consumer", return_value=consumer):
            with caplog.at_level(logging.ERROR):
                broker._consume_loop(binding)

        assert [c.args[0].event_id for c in handler.call_args_list] == [
            first.event_id, second.event_id,
        ]
        assert consumer.commit.call_count == 2
        consumer.close.assert_called_once()
        assert "could not commit offset 7" in caplog.text


# =============================================================================
# TEST: IDEMPOTENT CONSUMER
# =============================================================================

class TestIdempotentConsumer:

    def test_records_ledger_row(self, session_factory, db):
        consumer = CountingConsumer(session_factory)
        event = make_event()

        assert consumer.handle(event) == DeliveryOutcome.ACK

        row = db.get(ProcessedEventDB, (event.event_id, "counting"))
        assert row is not None
        assert row.event_type == "report.created"

    def test_duplicate_delivery_is_acked_once(self, session_factory):
        broker = InMemoryBroker()
        consumer = CountingConsumer(session_factory)
        consumer.bind(broker)
        event = make_event()

        broker.publish(event)
        broker.deliver(event)
        broker.deliver(event)

        assert consumer.processed == [event.event_id]
        assert broker.queues["counting"].acked == [event.event_id] * 3

    def test_ledger_is_per_consumer(self, session_factory):
        first = CountingConsumer(session_factory)
        second = CountingConsumer(session_factory)
        second.name = "counting-2"
        event = make_event()

        first.handle(event)
        second.handle(event)

        assert first.processed == second.processed == [event.event_id]

    def test_failure_nacks_and_records_nothing(self, session_factory, db):
        broker = InMemoryBroker()
        consumer = CountingConsumer(session_factory, fail=True)
        consumer.bind(broker)
        event = make_event()

        broker.publish(event)

        assert broker.queues["counting"].nacked == [event.event_id]
        assert broker.dead_letters[0].event is event
        assert db.get(ProcessedEventDB, (event.event_id, "counting")) is None

    def test_follow_ups_published_after_commit(self, session_factory, db):
        broker = InMemoryBroker()
        seen_ledger = []

        class Relay(CountingConsumer):
            name = "relay"

            def process(self, db, event):
                return [(EventType.REPORT_UPDATED, dict(event.payload))]

        def check_ledger(event):
            check_db = session_factory()
            try:
                seen_ledger.append(check_db.get(ProcessedEventDB, (trigger.event_id, "relay")) is not None)
            finally:
                check_db.close()
            return DeliveryOutcome.ACK

        relay = Relay(session_factory, publisher=EventPublisher(broker, "relay"))
        relay.event_types = (EventType.REPORT_CREATED,)
        relay.bind(broker)
        broker.subscribe("ledger-check", [EventType.REPORT_UPDATED], check_ledger)

        trigger = make_event()
        broker.publish(trigger)

        assert seen_ledger == [True]
        assert broker.events_of(EventType.REPORT_UPDATED)[0].source_component == "relay"


# =============================================================================
# TEST: PUBLISHER
# =============================================================================

class TestEventPublisher:

    def test_outage_after_commit_is_logged(self, make_report, service, broker, caplog):
        """The transition stays committed; the lost event is logged in full."""
        report, _ = make_report()
        broker.available = False

        with caplog.at_level(logging.ERROR, logger="lapor.services.events.publisher"):
            service.transition_status(report.id, ReportStatus.IN_PROGRESS)

        assert service.get_report(report.id).status == ReportStatus.IN_PROGRESS
        assert broker.events_of(EventType.REPORT_STATUS_CHANGED) == []
        assert "Failed to publish report.status_changed" in caplog.text
        assert report.reference_number in caplog.text

    def test_returns_event(self, broker):
        publisher = EventPublisher(broker, "report-store")
        event = publisher.publish(EventType.REPORT_CREATED, {"reportId": "r", "referenceNumber": "LP"})

        assert broker.published == [event]
        assert event.source_component == "report-store"
