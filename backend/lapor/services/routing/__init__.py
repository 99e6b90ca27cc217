"""
Classification / Routing

Pure keyword routing over ordered rule tables, and the consumer that applies
it to new reports.
"""

from .engine import RoutingEngine, RoutingDecision
from .consumer import RoutingConsumer

__all__ = [
    'RoutingEngine',
    'RoutingDecision',
    'RoutingConsumer',
]
