"""
Event Publisher

Builds DomainEvents for a component and hands them to the broker. Called
only after the unit of work that produced the change has committed.
"""
import logging
from typing import Any, Dict, Optional

from ...errors import DependencyUnavailable
from ...models.db_models import ReportDB
from ...models.events import DomainEvent, EventType
from .broker import EventBroker

logger = logging.getLogger(__name__)


def report_payload(report: ReportDB, **extra: Any) -> Dict[str, Any]:
    """Fields every report event carries, plus type-specific extras."""
    payload = {
        "reportId": report.id,
        "referenceNumber": report.reference_number,
    }
    payload.update(extra)
    return payload


class EventPublisher:
    """Publishes on behalf of one source component."""

    def __init__(self, broker: EventBroker, source_component: str):
        self.broker = broker
        self.source_component = source_component

    def publish(self, event_type: EventType, payload: Dict[str, Any]) -> Optional[DomainEvent]:
        """
        Publish one event.

        The state change is already committed, so a broker outage cannot be
        rolled back here. It is logged with the full event and None is
        returned.
        """
        event = DomainEvent(
            type=event_type,
            source_component=self.source_component,
            payload=payload,
        )
        try:
            self.broker.publish(event)
        except DependencyUnavailable as e:
            logger.error(
                f"Failed to publish {event_type.value} for {payload.get('referenceNumber')}: "
                f"{e.message} event={event.to_json()}"
            )
            return None

        logger.debug(f"Published {event_type.value} {event.event_id}")
        return event
