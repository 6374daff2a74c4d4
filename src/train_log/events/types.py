"""Audit event definitions for the transaction feed."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class AuditAction(str, Enum):
    """Things that happen to the log."""

    LOGGED = "logged"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DENIED = "denied"
    UNDONE = "undone"
    DAY_STARTED = "day_started"


ACTION_VERBS = {
    AuditAction.LOGGED: "applied",
    AuditAction.SUBMITTED: "submitted for approval",
    AuditAction.APPROVED: "approved",
    AuditAction.DENIED: "denied",
    AuditAction.UNDONE: "undid",
    AuditAction.DAY_STARTED: "started",
}


@dataclass
class AuditEvent:
    """One entry of the transaction feed."""

    action: AuditAction
    actor_id: str | None = None
    actor_name: str = ""
    description: str = ""
    submitter_id: str | None = None
    reference: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: UUID = field(default_factory=uuid4)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a dictionary for structured logs."""
        return {
            "id": str(self.event_id),
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "submitter_id": self.submitter_id,
            "reference": self.reference,
            "description": self.description,
        }

    def to_line(self) -> str:
        """Render the event as a feed message."""
        if self.action is AuditAction.DAY_STARTED:
            return f"📅 New operating day started ({self.description})"
        actor = f"<@{self.actor_id}>" if self.actor_id else self.actor_name or "Someone"
        head = f"{actor} {ACTION_VERBS[self.action]}"
        if self.submitter_id and self.submitter_id != self.actor_id:
            head += f" a submission by <@{self.submitter_id}>"
        if not self.description:
            return head
        return f"{head}:\n{self.description}"
