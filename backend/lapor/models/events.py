"""
Lapor Core - Domain Event Envelope

Every lifecycle change is announced as a DomainEvent. Events are immutable
once built; consumers de-duplicate on event_id.
"""

from __future__ import annotations
import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping
from uuid import uuid4


class EventType(str, Enum):
    """Fixed event catalog. The value doubles as the routing key."""
    REPORT_CREATED = "report.created"
    REPORT_UPDATED = "report.updated"
    REPORT_STATUS_CHANGED = "report.status_changed"
    REPORT_ASSIGNED = "report.assigned"
    REPORT_ESCALATED = "report.escalated"
    ROUTING_COMPLETED = "routing.completed"


REQUIRED_PAYLOAD_FIELDS = ("reportId", "referenceNumber")


@dataclass(frozen=True)
class DomainEvent:
    type: EventType
    source_component: str
    payload: Mapping[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def __post_init__(self):
        # Detached read-only copy; the caller keeps no handle on it
        object.__setattr__(self, "payload", MappingProxyType(copy.deepcopy(dict(self.payload))))
        missing = [key for key in REQUIRED_PAYLOAD_FIELDS if key not in self.payload]
        if missing:
            raise ValueError(f"Event payload missing required fields: {missing}")

    @property
    def routing_key(self) -> str:
        return self.type.value

    @property
    def report_id(self) -> str:
        return self.payload["reportId"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "timestamp": self.timestamp,
            "sourceComponent": self.source_component,
            "type": self.type.value,
            "payload": copy.deepcopy(dict(self.payload)),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomainEvent":
        return cls(
            type=EventType(data["type"]),
            source_component=data["sourceComponent"],
            payload=data["payload"],
            event_id=data["eventId"],
            timestamp=data["timestamp"],
        )

    @classmethod
    def from_json(cls, raw) -> "DomainEvent":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.from_dict(json.loads(raw))
