"""
SLA Escalation

AUTHORITY: SYSTEM
Deadline arithmetic, the escalation sweep and its periodic scheduler.
"""

from .deadline_engine import DeadlineEngine
from .escalation_service import EscalationService
from .scheduler import EscalationScheduler

__all__ = [
    'DeadlineEngine',
    'EscalationService',
    'EscalationScheduler',
]
