"""
Module: portal_engines
Responsibility:
    Package entrypoint for the pure calculation engines of the approval
    workflow: routing, group aggregation and status derivation, delegation
    choice, quiz scoring and escalation predicates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import portal_kernel/domain/ types and portal_kernel.exceptions.
    MUST NOT import portal_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Timestamps are passed
      in by the calling service.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from portal_engines.approval import derive_request_status, evaluate_group
    from portal_engines.routing import materialize_steps
    from portal_engines.quiz import score_answers
"""

from portal_engines.approval import (
    active_order,
    derive_request_status,
    evaluate_group,
    group_by_order,
    is_authorized,
    next_order,
)
from portal_engines.delegation import resolve_acting_user, select_active_delegation
from portal_engines.escalation import (
    escalation_deadline,
    escalation_target,
    is_escalation_due,
    is_reminder_due,
)
from portal_engines.quiz import GradedAnswer, grade_answers, score_answers
from portal_engines.routing import (
    candidates_for,
    materialize_steps,
    resolve_step_approvers,
)

__all__ = [
    "active_order",
    "candidates_for",
    "derive_request_status",
    "escalation_deadline",
    "escalation_target",
    "evaluate_group",
    "grade_answers",
    "GradedAnswer",
    "group_by_order",
    "is_authorized",
    "is_escalation_due",
    "is_reminder_due",
    "materialize_steps",
    "next_order",
    "resolve_acting_user",
    "resolve_step_approvers",
    "score_answers",
    "select_active_delegation",
]
