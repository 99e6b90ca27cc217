"""
Event Choreography

Brokers, the publisher used after commit, and the idempotent consumer base.
"""

from .broker import (
    DeliveryOutcome, EventBroker, InMemoryBroker, KafkaBroker, build_broker,
)
from .publisher import EventPublisher, report_payload
from .consumer import IdempotentConsumer

__all__ = [
    'DeliveryOutcome',
    'EventBroker',
    'InMemoryBroker',
    'KafkaBroker',
    'build_broker',
    'EventPublisher',
    'report_payload',
    'IdempotentConsumer',
]
