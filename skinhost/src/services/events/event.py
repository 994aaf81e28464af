"""Event types and data structures for the skin load observability channel."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class Severity(Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def value_int(self) -> int:
        """Return integer value for sorting (lower = less severe)."""
        order = {
            "debug": 0,
            "info": 1,
            "warning": 2,
            "error": 3,
            "critical": 4,
        }
        return order[self.value]

    def __ge__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.value_int >= other.value_int

    def __gt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.value_int > other.value_int

    def __le__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.value_int <= other.value_int

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.value_int < other.value_int


class EventType:
    """Hierarchical event type constants.

    Event types follow the pattern: category.action
    """

    # Script binding
    SCRIPT_EXECUTED = "script.executed"
    SCRIPT_SKIPPED = "script.skipped"
    SCRIPT_FAILED = "script.failed"
    TEMPLATE_PRUNED = "template.pruned"

    # Skin loads
    LOAD_STARTED = "load.started"
    LOAD_PUBLISHED = "load.published"
    LOAD_DISCARDED = "load.discarded"
    LOAD_ABORTED = "load.aborted"

    # Bridge lifetime
    BRIDGE_RELEASED = "bridge.released"


@dataclass
class Event:
    """An occurrence during a skin load.

    Attributes:
        id: Unique event identifier.
        type: Hierarchical event type (e.g., "script.failed").
        source: Component that generated the event.
        severity: Event severity level.
        timestamp: When the event occurred (UTC).
        payload: Event-specific data.
    """

    type: str
    source: str
    severity: Severity
    payload: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Serialize the event for logging."""
        return {
            "id": str(self.id),
            "type": self.type,
            "source": self.source,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }
