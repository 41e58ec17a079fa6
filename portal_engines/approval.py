"""
portal_engines.approval -- Pure group aggregation and status derivation.

Responsibility:
    Decide, from a request's step list alone, how each order group stands,
    what the request's status is, which order is currently active, which
    order comes next, and whether an actor may decide a step.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import portal_kernel/domain/ types.

Invariants enforced:
    - A request's status is a pure function of its steps
      (``derive_request_status``); nothing else sets it.
    - Group approval: a group is approved as soon as ``approved >= k``,
      regardless of the state of its remaining members.
    - Rejection halts: a single rejected member rejects its group, and any
      rejected step rejects the whole request.  Steps never reached stay
      pending.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ValueError from ``evaluate_group`` on an empty member list or on
      members that disagree about their order or threshold.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from uuid import UUID

from portal_kernel.domain.workflow import (
    ACTIVE_STEP_STATUSES,
    GroupEvaluation,
    GroupOutcome,
    RequestStatus,
    StepState,
    StepStatus,
)


def group_by_order(steps: Iterable[StepState]) -> dict[int, list[StepState]]:
    """Order groups keyed by step order, in ascending order."""
    groups: dict[int, list[StepState]] = {}
    for step in sorted(steps, key=lambda s: s.step_order):
        groups.setdefault(step.step_order, []).append(step)
    return groups


def evaluate_group(members: Sequence[StepState]) -> GroupEvaluation:
    """Aggregate one order group.

    Args:
        members: Every step sharing one step order.

    Returns:
        GroupEvaluation with outcome OPEN, APPROVED or REJECTED.
    """
    if not members:
        raise ValueError("Cannot evaluate an empty order group")

    step_order = members[0].step_order
    minimum = members[0].minimum_approvals
    for m in members:
        if m.step_order != step_order:
            raise ValueError(
                f"Order group mixes step orders {step_order} and {m.step_order}"
            )
        if m.minimum_approvals != minimum:
            raise ValueError(
                f"Order group {step_order} has inconsistent minimum_approvals"
            )

    statuses = [StepStatus(m.status) for m in members]
    approved = statuses.count(StepStatus.APPROVED)
    rejected = statuses.count(StepStatus.REJECTED)
    count = len(members)

    if approved >= minimum:
        outcome = GroupOutcome.APPROVED
    elif rejected:
        outcome = GroupOutcome.REJECTED
    else:
        outcome = GroupOutcome.OPEN

    return GroupEvaluation(
        step_order=step_order,
        outcome=outcome,
        member_count=count,
        approved_count=approved,
        rejected_count=rejected,
        minimum_approvals=minimum,
    )


def derive_request_status(steps: Sequence[StepState]) -> RequestStatus:
    """The request status implied by its steps.

    Any rejected step rejects the request.  All groups approved (or no
    steps at all) approves it.  Otherwise the request is awaiting a survey
    when an active step is blocked on its quiz, and in review when not.
    """
    if not steps:
        return RequestStatus.APPROVED
    if any(StepStatus(s.status) == StepStatus.REJECTED for s in steps):
        return RequestStatus.REJECTED

    evaluations = [evaluate_group(g) for g in group_by_order(steps).values()]
    if all(e.outcome == GroupOutcome.APPROVED for e in evaluations):
        return RequestStatus.APPROVED
    if any(StepStatus(s.status) == StepStatus.REQUIRES_SURVEY for s in steps):
        return RequestStatus.AWAITING_SURVEY
    return RequestStatus.IN_REVIEW


def active_order(steps: Iterable[StepState]) -> int | None:
    """The step order whose members are awaiting action, if any."""
    orders = [s.step_order for s in steps if StepStatus(s.status) in ACTIVE_STEP_STATUSES]
    return min(orders) if orders else None


def next_order(steps: Iterable[StepState], after: int) -> int | None:
    """The lowest order after ``after`` that still has pending steps."""
    orders = [
        s.step_order for s in steps
        if s.step_order > after and StepStatus(s.status) == StepStatus.PENDING
    ]
    return min(orders) if orders else None


def is_authorized(
    actor_id: UUID,
    effective_approver_id: UUID,
    acting_user_id: UUID | None = None,
) -> bool:
    """True when the actor is the effective approver or their active delegate."""
    if actor_id == effective_approver_id:
        return True
    return acting_user_id is not None and actor_id == acting_user_id
