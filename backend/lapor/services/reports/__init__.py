"""
Report Store Services

- ReportStateMachine: transition table + compare-and-set status writes
- ReferenceNumberAllocator: per-year atomic reference sequence
- IdentityVault: anonymous reporter encryption + tracking tokens
- ReportService: intake, transitions, tracking, engagement
"""

from .state_machine import ReportStateMachine, STATE_CONFIG
from .reference_numbers import ReferenceNumberAllocator, format_reference
from .identity_vault import IdentityVault, SealedIdentity
from .report_service import ReportService, report_to_dict

__all__ = [
    'ReportStateMachine',
    'STATE_CONFIG',
    'ReferenceNumberAllocator',
    'format_reference',
    'IdentityVault',
    'SealedIdentity',
    'ReportService',
    'report_to_dict',
]
