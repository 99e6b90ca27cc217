"""
Idempotent Consumer

Base class for event consumers. Delivery is at-least-once, so each
consumer records (event_id, consumer) in processed_events in the same
transaction as its side effect:

- already recorded -> ack, do nothing
- side effect + ledger row committed -> ack, then publish follow-ups
- anything raised -> rollback, log, nack (dead-letter, no requeue)
"""
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import ProcessedEventDB, utcnow
from ...models.events import DomainEvent, EventType
from .broker import DeliveryOutcome, EventBroker
from .publisher import EventPublisher

logger = logging.getLogger(__name__)

FollowUp = Tuple[EventType, dict]


class IdempotentConsumer:
    """Subclasses set `name` and `event_types` and implement process()."""

    name: str = ""
    event_types: Tuple[EventType, ...] = ()

    def __init__(
        self,
        session_factory: Callable[[], Session],
        publisher: Optional[EventPublisher] = None,
        clock=utcnow,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.clock = clock

    def bind(self, broker: EventBroker) -> None:
        broker.subscribe(self.name, self.event_types, self.handle)

    def process(self, db: Session, event: DomainEvent) -> Optional[List[FollowUp]]:
        """Stage the side effect in `db`. Return follow-up events, if any."""
        raise NotImplementedError

    def already_processed(self, db: Session, event_id: str) -> bool:
        return db.get(ProcessedEventDB, (event_id, self.name)) is not None

    def handle(self, event: DomainEvent) -> DeliveryOutcome:
        db = self.session_factory()
        try:
            if self.already_processed(db, event.event_id):
                logger.info(f"{self.name}: duplicate {event.type.value} {event.event_id}, skipping")
                return DeliveryOutcome.ACK

            follow_ups = self.process(db, event) or []
            db.add(ProcessedEventDB(
                event_id=event.event_id,
                consumer=self.name,
                event_type=event.type.value,
                processed_at=self.clock(),
            ))
            db.commit()

        except IntegrityError as e:
            db.rollback()
            if self.already_processed(db, event.event_id):
                # A concurrent delivery of the same event won the ledger insert
                logger.info(f"{self.name}: {event.event_id} recorded concurrently, skipping")
                return DeliveryOutcome.ACK
            logger.error(f"{self.name}: integrity error on {event.event_id}: {e}")
            return DeliveryOutcome.NACK

        except Exception as e:
            db.rollback()
            logger.error(f"{self.name}: failed on {event.type.value} {event.event_id}: {e}")
            return DeliveryOutcome.NACK

        finally:
            db.close()

        if self.publisher is not None:
            for event_type, payload in follow_ups:
                self.publisher.publish(event_type, payload)

        return DeliveryOutcome.ACK
