"""
Approval workflow domain types (``portal_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the request approval engine.  Defines the request
and step lifecycles, the approver-selection strategy union, template
snapshots, request/step DTOs, and the structured outcomes returned by the
orchestrator.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Step lifecycle -- ``STEP_TRANSITIONS`` defines the only valid step
  status transitions.  Terminal states have no outgoing edges.
* Escalation is a marker (``escalated_at`` / ``escalated_to_id``), never a
  status: it does not appear in ``StepStatus``.
* Business-rule outcomes are values (``ResolutionOutcome``), never
  exceptions.
* Template snapshots are frozen; a request carries its own materialized
  copy of every field that drives its workflow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, Union
from uuid import UUID


# =========================================================================
# Request and Step Lifecycles
# =========================================================================


class RequestStatus(str, Enum):
    """Request lifecycle states.  Always derived from the step list."""

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    AWAITING_SURVEY = "awaiting_survey"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
})


class RequestPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class StepStatus(str, Enum):
    """Approval step lifecycle states.

    SUPERSEDED marks a parallel-group member that was administratively
    closed because the group already reached its approval threshold, or an
    active sibling closed because the request was rejected.
    """

    PENDING = "pending"
    IN_REVIEW = "in_review"
    REQUIRES_SURVEY = "requires_survey"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.IN_REVIEW,
    }),
    StepStatus.IN_REVIEW: frozenset({
        StepStatus.REQUIRES_SURVEY,
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SUPERSEDED,
    }),
    StepStatus.REQUIRES_SURVEY: frozenset({
        StepStatus.IN_REVIEW,
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.SUPERSEDED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.SUPERSEDED: frozenset(),
}

ACTIVE_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.IN_REVIEW,
    StepStatus.REQUIRES_SURVEY,
})

TERMINAL_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.REJECTED,
    StepStatus.SUPERSEDED,
})


def can_transition(current: StepStatus | str, target: StepStatus | str) -> bool:
    """True when ``current -> target`` is an edge of the step lifecycle."""
    return StepStatus(target) in STEP_TRANSITIONS[StepStatus(current)]


class StepDecision(str, Enum):
    """Decision types that an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"


class GroupOutcome(str, Enum):
    """Aggregate state of one order group."""

    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Approver-Selection Strategies
# =========================================================================


class StrategyKind(str, Enum):
    FIXED_USER = "fixed_user"
    ROLE = "role"
    ROLE_GROUP = "role_group"
    DEPARTMENT_ROLE = "department_role"
    DIRECT_SUPERVISOR = "direct_supervisor"


DEPARTMENT_HEAD_ROLE = "head"


@dataclass(frozen=True)
class FixedUser:
    """A single named approver."""

    user_id: UUID
    kind: StrategyKind = field(default=StrategyKind.FIXED_USER, init=False)


@dataclass(frozen=True)
class RoleStrategy:
    """Every user holding ``role`` organisation-wide."""

    role: str
    kind: StrategyKind = field(default=StrategyKind.ROLE, init=False)


@dataclass(frozen=True)
class RoleGroupStrategy:
    """Every member of a named role group."""

    group_id: UUID
    kind: StrategyKind = field(default=StrategyKind.ROLE_GROUP, init=False)


@dataclass(frozen=True)
class DepartmentRoleStrategy:
    """Users holding ``role`` inside one department (default: its head)."""

    department_id: UUID
    role: str = DEPARTMENT_HEAD_ROLE
    kind: StrategyKind = field(default=StrategyKind.DEPARTMENT_ROLE, init=False)


@dataclass(frozen=True)
class DirectSupervisorStrategy:
    """The submitter's direct supervisor."""

    kind: StrategyKind = field(default=StrategyKind.DIRECT_SUPERVISOR, init=False)


ApproverStrategy = Union[
    FixedUser,
    RoleStrategy,
    RoleGroupStrategy,
    DepartmentRoleStrategy,
    DirectSupervisorStrategy,
]


def strategy_from_fields(
    kind: StrategyKind | str,
    user_id: UUID | None = None,
    role: str | None = None,
    group_id: UUID | None = None,
    department_id: UUID | None = None,
) -> ApproverStrategy:
    """Rebuild a strategy from its flattened persistence columns.

    Raises:
        ValueError: If a field the strategy kind needs is missing.
    """
    kind = StrategyKind(kind)
    if kind == StrategyKind.FIXED_USER:
        if user_id is None:
            raise ValueError("fixed_user strategy requires user_id")
        return FixedUser(user_id=user_id)
    if kind == StrategyKind.ROLE:
        if not role:
            raise ValueError("role strategy requires role")
        return RoleStrategy(role=role)
    if kind == StrategyKind.ROLE_GROUP:
        if group_id is None:
            raise ValueError("role_group strategy requires group_id")
        return RoleGroupStrategy(group_id=group_id)
    if kind == StrategyKind.DEPARTMENT_ROLE:
        if department_id is None:
            raise ValueError("department_role strategy requires department_id")
        return DepartmentRoleStrategy(
            department_id=department_id, role=role or DEPARTMENT_HEAD_ROLE,
        )
    return DirectSupervisorStrategy()


def strategy_fields(strategy: ApproverStrategy) -> dict[str, Any]:
    """Flatten a strategy into ``strategy_*`` persistence columns."""
    return {
        "strategy_kind": strategy.kind.value,
        "strategy_user_id": getattr(strategy, "user_id", None),
        "strategy_role": getattr(strategy, "role", None),
        "strategy_group_id": getattr(strategy, "group_id", None),
        "strategy_department_id": getattr(strategy, "department_id", None),
    }


# =========================================================================
# Template Snapshot
# =========================================================================


@dataclass(frozen=True)
class QuizQuestion:
    """One question of a step's quiz bank."""

    question_id: UUID
    prompt: str
    correct_answer: str
    options: tuple[str, ...] = ()
    sort_order: int = 0


@dataclass(frozen=True)
class StepTemplate:
    """One approval step definition as captured at submission time."""

    step_order: int
    strategy: ApproverStrategy
    step_template_id: UUID | None = None
    parallel_group_id: str | None = None
    minimum_approvals: int = 1
    requires_quiz: bool = False
    passing_score: int | None = None
    escalation_timeout_seconds: int | None = None
    escalation_user_id: UUID | None = None
    quiz_questions: tuple[QuizQuestion, ...] = ()

    @property
    def is_parallel(self) -> bool:
        return self.parallel_group_id is not None


@dataclass(frozen=True)
class TemplateDefinition:
    """A template as authored, before it is persisted."""

    name: str
    steps: tuple[StepTemplate, ...] = ()
    description: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class TemplateSnapshot:
    """Immutable view of a request template and its ordered steps."""

    template_id: UUID
    name: str
    steps: tuple[StepTemplate, ...] = ()
    is_active: bool = True


# =========================================================================
# Request and Step Records
# =========================================================================


@dataclass(frozen=True)
class RequestDraft:
    """What a submitter hands in."""

    template_id: UUID
    submitter_id: UUID
    form_data: dict[str, Any] = field(default_factory=dict)
    priority: RequestPriority = RequestPriority.NORMAL


class StepState(Protocol):
    """Read-only shape shared by step DTOs and step ORM rows.

    Engines accept anything with these attributes so the same pure
    functions run against a loaded request inside a transaction and
    against frozen DTOs in tests.
    """

    step_order: int
    status: Any
    minimum_approvals: int


@dataclass(frozen=True)
class ApprovalStep:
    """Immutable snapshot of one materialized approval step."""

    step_id: UUID
    request_id: UUID
    step_order: int
    approver_id: UUID
    status: StepStatus
    minimum_approvals: int = 1
    parallel_group_id: str | None = None
    requires_quiz: bool = False
    passing_score: int | None = None
    quiz_passed: bool | None = None
    quiz_score: int | None = None
    comment: str | None = None
    decided_by_id: UUID | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    escalated_at: datetime | None = None
    escalated_to_id: UUID | None = None
    escalation_timeout_seconds: int | None = None
    escalation_user_id: UUID | None = None
    step_template_id: UUID | None = None

    @property
    def effective_approver_id(self) -> UUID:
        """Escalation target once escalated, otherwise the resolved approver."""
        return self.escalated_to_id or self.approver_id

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STEP_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES

    @property
    def is_escalated(self) -> bool:
        return self.escalated_at is not None


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of a request and its materialized step list."""

    request_id: UUID
    template_id: UUID
    submitter_id: UUID
    submitted_at: datetime
    status: RequestStatus
    version: int
    priority: RequestPriority = RequestPriority.NORMAL
    form_data: dict[str, Any] = field(default_factory=dict)
    completed_at: datetime | None = None
    steps: tuple[ApprovalStep, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES

    def step(self, step_id: UUID) -> ApprovalStep | None:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        return None


@dataclass(frozen=True)
class MaterializedStep:
    """A step resolved from a template at submission, before persistence."""

    step_order: int
    approver_id: UUID
    status: StepStatus
    minimum_approvals: int = 1
    parallel_group_id: str | None = None
    started_at: datetime | None = None
    requires_quiz: bool = False
    passing_score: int | None = None
    escalation_timeout_seconds: int | None = None
    escalation_user_id: UUID | None = None
    step_template_id: UUID | None = None
    quiz_questions: tuple[QuizQuestion, ...] = ()


@dataclass(frozen=True)
class GroupEvaluation:
    """Aggregate of one order group's member statuses."""

    step_order: int
    outcome: GroupOutcome
    member_count: int
    approved_count: int
    rejected_count: int
    minimum_approvals: int


# =========================================================================
# Resolution Outcomes
# =========================================================================


class ResolutionOutcome(str, Enum):
    """Every way a ResolveStep call can end without raising."""

    APPROVED_COMPLETE = "approved_complete"
    APPROVED_ADVANCED = "approved_advanced"
    APPROVED_AWAITING_GROUP = "approved_awaiting_group"
    REJECTED_HALTED = "rejected_halted"
    QUIZ_REQUIRED = "quiz_required"
    QUIZ_FAILED = "quiz_failed"
    UNAUTHORIZED_APPROVER = "unauthorized_approver"
    STEP_NOT_ACTIVE = "step_not_active"
    ALREADY_RESOLVED = "already_resolved"

    @property
    def success(self) -> bool:
        return self in _SUCCESSFUL_OUTCOMES

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self]


_SUCCESSFUL_OUTCOMES = frozenset({
    ResolutionOutcome.APPROVED_COMPLETE,
    ResolutionOutcome.APPROVED_ADVANCED,
    ResolutionOutcome.APPROVED_AWAITING_GROUP,
    ResolutionOutcome.REJECTED_HALTED,
})

OUTCOME_MESSAGES: dict[ResolutionOutcome, str] = {
    ResolutionOutcome.APPROVED_COMPLETE: "approved, workflow complete",
    ResolutionOutcome.APPROVED_ADVANCED: "approved, advanced to next step",
    ResolutionOutcome.APPROVED_AWAITING_GROUP: "approved, awaiting parallel approvals",
    ResolutionOutcome.REJECTED_HALTED: "rejected, workflow halted",
    ResolutionOutcome.QUIZ_REQUIRED: "quiz must be completed first",
    ResolutionOutcome.QUIZ_FAILED: "quiz failed, step cannot be approved",
    ResolutionOutcome.UNAUTHORIZED_APPROVER: "actor is not the approver or an active delegate",
    ResolutionOutcome.STEP_NOT_ACTIVE: "step is not awaiting action",
    ResolutionOutcome.ALREADY_RESOLVED: "step already resolved",
}


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one ResolveStep call.

    ``events`` holds the notifications to dispatch once the transaction
    that produced them has committed.  It is empty for every outcome that
    changed nothing.
    """

    outcome: ResolutionOutcome
    request_id: UUID
    step_id: UUID
    request_status: RequestStatus
    activated_step_ids: tuple[UUID, ...] = ()
    events: tuple = ()

    @property
    def success(self) -> bool:
        return self.outcome.success

    @property
    def message(self) -> str:
        return self.outcome.message


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a submission: the new request and its pending events."""

    request_id: UUID
    status: RequestStatus
    step_ids: tuple[UUID, ...] = ()
    events: tuple = ()


@dataclass(frozen=True)
class SweepReport:
    """Summary of one escalation sweep pass."""

    scanned: int = 0
    escalated: int = 0
    skipped_no_target: int = 0
    skipped_stale: int = 0
    conflicts: int = 0
    reminders_sent: int = 0
    escalated_step_ids: tuple[UUID, ...] = ()
