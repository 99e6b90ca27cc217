"""
Lapor Core - Component Wiring

Builds the broker, publishers, consumers and the escalation scheduler for
one process. The FastAPI app and the tests share this so they run the same
choreography.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .config import EVENT_BROKER
from .models.db_models import utcnow
from .services.escalation.scheduler import EscalationScheduler
from .services.events.broker import EventBroker, build_broker
from .services.events.publisher import EventPublisher
from .services.notifications.fanout import NotificationFanout
from .services.reports.identity_vault import IdentityVault
from .services.routing.consumer import RoutingConsumer
from .services.routing.engine import RoutingEngine

logger = logging.getLogger(__name__)

REPORT_STORE = "report-store"
ROUTING_ENGINE = "routing-engine"
ESCALATION_SCHEDULER = "escalation-scheduler"


@dataclass
class Components:
    broker: EventBroker
    report_publisher: EventPublisher
    routing_engine: RoutingEngine
    routing_consumer: RoutingConsumer
    notification_fanout: NotificationFanout
    scheduler: EscalationScheduler
    vault: IdentityVault


def build_components(
    session_factory: Callable[[], Session],
    broker: Optional[EventBroker] = None,
    clock: Callable[[], datetime] = utcnow,
    admin_ids: Optional[List[str]] = None,
    vault: Optional[IdentityVault] = None,
) -> Components:
    broker = broker or build_broker(EVENT_BROKER)
    routing_engine = RoutingEngine()

    routing_consumer = RoutingConsumer(
        session_factory,
        EventPublisher(broker, ROUTING_ENGINE),
        engine=routing_engine,
        clock=clock,
    )
    routing_consumer.bind(broker)

    notification_fanout = NotificationFanout(session_factory, admin_ids=admin_ids, clock=clock)
    notification_fanout.bind(broker)

    scheduler = EscalationScheduler(
        session_factory,
        EventPublisher(broker, ESCALATION_SCHEDULER),
        clock=clock,
    )

    logger.info(f"Components wired on {type(broker).__name__}")
    return Components(
        broker=broker,
        report_publisher=EventPublisher(broker, REPORT_STORE),
        routing_engine=routing_engine,
        routing_consumer=routing_consumer,
        notification_fanout=notification_fanout,
        scheduler=scheduler,
        vault=vault or IdentityVault(),
    )
