"""
Event Brokers

Topic publish/subscribe with at-least-once delivery.

- Every event is published under a routing key equal to its type.
- A consumer binds a named, durable queue to the event types it needs.
- The queue handler returns ACK once its side effect is durable, or NACK.
- NACKed messages are not requeued. They go to the dead-letter destination
  with the failure reason.
- A handler that raises is treated as a NACK; the delivery loop keeps going.

InMemoryBroker delivers synchronously in-process (single instance, tests).
KafkaBroker maps each event type to a topic and each queue to a consumer
group, keyed by report id so a report's events stay in order.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ...config import EVENT_DEAD_LETTER_TOPIC, KAFKA_BOOTSTRAP_SERVERS
from ...errors import DependencyUnavailable
from ...models.events import DomainEvent, EventType

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    ACK = "ack"
    NACK = "nack"


Handler = Callable[[DomainEvent], DeliveryOutcome]


@dataclass
class DeadLetter:
    queue: str
    event: DomainEvent
    reason: str


@dataclass
class QueueBinding:
    name: str
    event_types: Tuple[EventType, ...]
    handler: Handler
    acked: List[str] = field(default_factory=list)
    nacked: List[str] = field(default_factory=list)


def _dispatch(binding: QueueBinding, event: DomainEvent) -> Tuple[DeliveryOutcome, str]:
    """Run a handler and never let it raise."""
    try:
        outcome = binding.handler(event)
    except Exception as e:
        logger.error(f"Queue {binding.name} handler crashed on {event.event_id}: {e}")
        return DeliveryOutcome.NACK, f"handler error: {e}"

    if outcome == DeliveryOutcome.ACK:
        return DeliveryOutcome.ACK, ""
    return DeliveryOutcome.NACK, "handler rejected event"


class EventBroker:
    """Interface shared by the broker implementations."""

    def publish(self, event: DomainEvent) -> None:
        raise NotImplementedError

    def subscribe(self, queue: str, event_types: Iterable[EventType], handler: Handler) -> None:
        raise NotImplementedError

    def start(self) -> None:
        """Begin delivering to subscribed queues."""

    def close(self) -> None:
        """Release connections."""


# =============================================================================
# IN-MEMORY BROKER
# =============================================================================

class InMemoryBroker(EventBroker):
    """
    Process-local broker.

    With auto_deliver (default) publish() hands the event to every bound
    queue before returning. With auto_deliver=False events wait in `pending`
    until drain() is called.
    """

    def __init__(self, auto_deliver: bool = True):
        self.auto_deliver = auto_deliver
        self.available = True
        self.queues: Dict[str, QueueBinding] = {}
        self.published: List[DomainEvent] = []
        self.pending: List[DomainEvent] = []
        self.dead_letters: List[DeadLetter] = []
        self._lock = threading.RLock()

    def subscribe(self, queue: str, event_types: Iterable[EventType], handler: Handler) -> None:
        with self._lock:
            self.queues[queue] = QueueBinding(
                name=queue,
                event_types=tuple(EventType(t) for t in event_types),
                handler=handler,
            )
        logger.info(f"Queue {queue} bound to {[EventType(t).value for t in event_types]}")

    def publish(self, event: DomainEvent) -> None:
        if not self.available:
            raise DependencyUnavailable("Event broker unavailable", {"eventType": event.type.value})

        with self._lock:
            self.published.append(event)
            if not self.auto_deliver:
                self.pending.append(event)
                return

        self.deliver(event)

    def deliver(self, event: DomainEvent) -> None:
        """Hand one event to every queue bound to its type (also used to simulate redelivery)."""
        for binding in list(self.queues.values()):
            if event.type not in binding.event_types:
                continue
            outcome, reason = _dispatch(binding, event)
            if outcome == DeliveryOutcome.ACK:
                binding.acked.append(event.event_id)
            else:
                binding.nacked.append(event.event_id)
                self.dead_letters.append(DeadLetter(binding.name, event, reason))
                logger.warning(
                    f"Dead-lettered {event.type.value} {event.event_id} from {binding.name}: {reason}"
                )

    def drain(self) -> int:
        """Deliver everything held back while auto_deliver was off."""
        delivered = 0
        while True:
            with self._lock:
                if not self.pending:
                    return delivered
                event = self.pending.pop(0)
            self.deliver(event)
            delivered += 1

    def events_of(self, event_type: EventType) -> List[DomainEvent]:
        return [e for e in self.published if e.type == event_type]


# =============================================================================
# KAFKA BROKER
# =============================================================================

class KafkaBroker(EventBroker):
    """
    confluent-kafka backed broker.

    Topic = event type, consumer group = "lapor.<queue>", message key =
    report id. Offsets are committed manually after the handler returns, so
    a crash before commit means redelivery, never loss.
    """

    def __init__(
        self,
        bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS,
        dead_letter_topic: str = EVENT_DEAD_LETTER_TOPIC,
        poll_timeout_seconds: float = 1.0,
        flush_timeout_seconds: float = 10.0,
    ):
        self._bootstrap_servers = bootstrap_servers
        self._dead_letter_topic = dead_letter_topic
        self._poll_timeout = poll_timeout_seconds
        self._flush_timeout = flush_timeout_seconds
        self._producer = None
        self._bindings: Dict[str, QueueBinding] = {}
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()

    def _get_producer(self):
        """Get or create the Kafka producer."""
        if self._producer is None:
            from confluent_kafka import Producer

            self._producer = Producer({
                "bootstrap.servers": self._bootstrap_servers,
                "acks": "all",
                "enable.idempotence": True,
                "message.timeout.ms": 10000,
                "request.timeout.ms": 10000,
                "retries": 3,
            })
        return self._producer

    def _new_consumer(self, queue: str, topics: List[str]):
        from confluent_kafka import Consumer

        consumer = Consumer({
            "bootstrap.servers": self._bootstrap_servers,
            "group.id": f"lapor.{queue}",
            "auto.offset.reset": "earliest",
            "enable.auto.commit": False,  # Commit only after the handler finishes
            "max.poll.interval.ms": 300000,
            "session.timeout.ms": 45000,
        })
        consumer.subscribe(topics)
        logger.info(f"Consumer {queue} subscribed to {topics}")
        return consumer

    def _produce(self, topic: str, key: str, value: str, headers: Optional[list] = None) -> None:
        delivery = {"error": None}

        def delivery_callback(err, msg):
            if err:
                delivery["error"] = str(err)

        try:
            producer = self._get_producer()
            producer.produce(
                topic=topic,
                key=key.encode("utf-8"),
                value=value.encode("utf-8"),
                headers=headers or [],
                callback=delivery_callback,
            )
            remaining = producer.flush(timeout=self._flush_timeout)
        except Exception as e:
            raise DependencyUnavailable("Event broker unavailable", {"topic": topic}) from e

        if remaining > 0 or delivery["error"]:
            raise DependencyUnavailable(
                "Event broker did not confirm delivery",
                {"topic": topic, "error": delivery["error"] or "Flush timeout"},
            )

    def publish(self, event: DomainEvent) -> None:
        self._produce(
            topic=event.routing_key,
            key=event.report_id,
            value=event.to_json(),
            headers=[("source_component", event.source_component.encode("utf-8"))],
        )

    def subscribe(self, queue: str, event_types: Iterable[EventType], handler: Handler) -> None:
        self._bindings[queue] = QueueBinding(
            name=queue,
            event_types=tuple(EventType(t) for t in event_types),
            handler=handler,
        )

    def start(self) -> None:
        for binding in self._bindings.values():
            thread = threading.Thread(
                target=self._consume_loop,
                args=(binding,),
                name=f"lapor-consumer-{binding.name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def _dead_letter(self, binding: QueueBinding, event: DomainEvent, reason: str) -> None:
        try:
            self._produce(
                topic=self._dead_letter_topic,
                key=event.report_id,
                value=event.to_json(),
                headers=[
                    ("queue", binding.name.encode("utf-8")),
                    ("reason", reason.encode("utf-8")),
                ],
            )
        except DependencyUnavailable as e:
            logger.error(f"Could not dead-letter {event.event_id} from {binding.name}: {e}")

    def _commit(self, binding: QueueBinding, consumer, message) -> bool:
        """Commit one offset. A failed commit leaves the message to be redelivered."""
        from confluent_kafka import KafkaException

        try:
            consumer.commit(message=message, asynchronous=False)
        except KafkaException as e:
            logger.error(
                f"Consumer {binding.name} could not commit offset {message.offset()}"
                f" on {message.topic()}: {e}"
            )
            return False
        return True

    def _consume_loop(self, binding: QueueBinding) -> None:
        consumer = self._new_consumer(binding.name, [t.value for t in binding.event_types])
        try:
            while not self._stop.is_set():
                message = consumer.poll(timeout=self._poll_timeout)
                if message is None:
                    continue
                if message.error():
                    logger.error(f"Consumer {binding.name} error: {message.error()}")
                    continue

                try:
                    event = DomainEvent.from_json(message.value())
                except (ValueError, KeyError) as e:
                    logger.error(f"Consumer {binding.name} dropped malformed message: {e}")
                    self._commit(binding, consumer, message)
                    continue

                outcome, reason = _dispatch(binding, event)
                if outcome == DeliveryOutcome.NACK:
                    self._dead_letter(binding, event, reason)

                self._commit(binding, consumer, message)
        finally:
            consumer.close()
            logger.info(f"Consumer {binding.name} closed")

    def close(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=self._poll_timeout * 5)
        if self._producer is not None:
            self._producer.flush(timeout=5.0)
            logger.info("Producer flushed")


def build_broker(kind: str) -> EventBroker:
    if kind == "kafka":
        return KafkaBroker()
    if kind == "memory":
        return InMemoryBroker()
    raise ValueError(f"Unknown event broker: {kind}")
