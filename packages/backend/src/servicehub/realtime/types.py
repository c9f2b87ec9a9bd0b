"""Value types shared by the live layer.

Learn: Everything here is immutable. A ChangeEvent is what the store
emitted; an Action is what the mapper decided it means for one view.
Neither is ever persisted by this service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Operation(str, Enum):
    """Row operation carried by a change event."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL = "*"  # subscription wildcard, never carried by an event


class Category(str, Enum):
    """What kind of backlog an action belongs to."""

    DOCUMENT = "document"
    REQUEST = "request"
    USER = "user"
    PAYMENT = "payment"
    MESSAGE = "message"
    NOTIFICATION = "notification"


class Audience(str, Enum):
    """Whose screen a subscription feeds — selects the mapping rules."""

    ADMIN = "admin"
    CLIENT = "client"
    WORKER = "worker"
    INBOX = "inbox"
    CONVERSATION = "conversation"


@dataclass(frozen=True)
class RowFilter:
    """Single equality predicate: ``row[column] == value``."""

    column: str
    value: str

    @property
    def channel_suffix(self) -> str:
        return f"{self.column}={self.value}"


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete on a stream with before/after snapshots."""

    stream: str
    operation: Operation
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChangeEvent":
        """Build from the trigger's JSON shape: {stream, operation, old, new}."""
        return cls(
            stream=payload["stream"],
            operation=Operation(payload["operation"]),
            before=payload.get("old"),
            after=payload.get("new"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "stream": self.stream,
            "operation": self.operation.value,
            "old": self.before,
            "new": self.after,
        }

    @property
    def record(self) -> dict[str, Any]:
        """The most recent snapshot of the row (after, else before)."""
        return self.after or self.before or {}


@dataclass(frozen=True)
class MappingContext:
    """Who is looking, and through which subscription."""

    user_id: str
    audience: Audience


@dataclass(frozen=True)
class Action:
    """A change event translated into something a view cares about."""

    kind: str
    category: Category
    stream: str
    record: dict[str, Any] = field(default_factory=dict)
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
