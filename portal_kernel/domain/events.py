"""
Workflow events (``portal_kernel.domain.events``).

Responsibility:
    Immutable notification records emitted by the orchestrator and the
    escalation sweeper, and the ``NotificationSink`` protocol that consumes
    them.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Events are built inside a transaction but only handed to sinks after
      that transaction commits; a rolled-back operation emits nothing.
    - Sinks are fire-and-forget: their failure never affects workflow state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol
from uuid import UUID


class WorkflowEventType(str, Enum):
    STEP_ACTIVATED = "step_activated"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    STEP_ESCALATED = "step_escalated"
    STEP_OVERDUE = "step_overdue"
    REQUEST_EDITED = "request_edited"
    COMMENT_ADDED = "comment_added"
    REQUEST_COMPLETED = "request_completed"


@dataclass(frozen=True)
class WorkflowEvent:
    """One notification about a request or one of its steps.

    ``recipient_id`` is the user the notification is addressed to (the
    newly active approver, the escalation target, the submitter on
    completion) and may be None for audit-only events.
    """

    event_type: WorkflowEventType
    request_id: UUID
    occurred_at: datetime
    step_id: UUID | None = None
    recipient_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    """Receives workflow events after commit."""

    def notify(self, event: WorkflowEvent) -> None:
        ...
