"""
portal_engines.escalation -- Pure escalation and SLA-reminder predicates.

Responsibility:
    Decide whether an active step has outlived its escalation timeout, who
    it escalates to, and whether it is overdue for an SLA reminder.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is passed in.

Invariants enforced:
    - Only active steps (in review / requires survey) that have not been
      escalated yet and carry a timeout are ever due.
    - Due means ``started_at + timeout < now`` (strictly past the deadline).
    - Escalation never depends on, or changes, the primary step status.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from portal_kernel.domain.workflow import ACTIVE_STEP_STATUSES, StepStatus


def escalation_deadline(step: Any) -> datetime | None:
    if step.started_at is None or step.escalation_timeout_seconds is None:
        return None
    return step.started_at + timedelta(seconds=step.escalation_timeout_seconds)


def is_escalation_due(step: Any, now: datetime) -> bool:
    if StepStatus(step.status) not in ACTIVE_STEP_STATUSES:
        return False
    if step.escalated_at is not None:
        return False
    deadline = escalation_deadline(step)
    return deadline is not None and deadline < now


def escalation_target(step: Any, default_user_id: UUID | None) -> UUID | None:
    """The step's own escalation user, else the configured default."""
    return step.escalation_user_id or default_user_id


def is_reminder_due(step: Any, now: datetime, threshold: timedelta) -> bool:
    """Active step that has been waiting at least ``threshold``."""
    if StepStatus(step.status) not in ACTIVE_STEP_STATUSES:
        return False
    if step.started_at is None:
        return False
    return step.started_at + threshold <= now
