"""
portal_engines.routing -- Approver resolution and step materialization.

Responsibility:
    Turn a template snapshot into the concrete, ordered step list of a new
    request: resolve each step's approver-selection strategy into user ids
    through the organisation directory, fan parallel steps out to every
    candidate, and set the first order group in review.

Architecture position:
    Engines -- pure calculation layer.  The directory is an injected,
    read-only lookup; the current time is passed in.

Invariants enforced:
    - Strategies are resolved once, here, at submission; decisions never
      re-resolve them.
    - Parallel steps fan out to every candidate (minus the submitter);
      sequential steps take the first candidate in directory order.
    - An order group that cannot reach its minimum approvals after
      resolution is a resolution failure, not a request that can never
      complete.

Failure modes:
    - TemplateResolutionError when a strategy yields no eligible approver
      or a parallel group is smaller than its threshold.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from uuid import UUID

from portal_kernel.domain.directory import OrgDirectory
from portal_kernel.domain.workflow import (
    ApproverStrategy,
    DepartmentRoleStrategy,
    DirectSupervisorStrategy,
    FixedUser,
    MaterializedStep,
    RoleGroupStrategy,
    RoleStrategy,
    StepStatus,
    StepTemplate,
    TemplateSnapshot,
)
from portal_kernel.exceptions import TemplateResolutionError

from portal_engines.tracer import traced_engine


def candidates_for(
    strategy: ApproverStrategy,
    submitter_id: UUID,
    directory: OrgDirectory,
) -> tuple[UUID, ...]:
    """Every user the strategy names, de-duplicated, in directory order."""
    if isinstance(strategy, FixedUser):
        found: tuple[UUID, ...] = (strategy.user_id,)
    elif isinstance(strategy, RoleStrategy):
        found = directory.users_with_role(strategy.role)
    elif isinstance(strategy, RoleGroupStrategy):
        found = directory.users_in_group(strategy.group_id)
    elif isinstance(strategy, DepartmentRoleStrategy):
        found = directory.department_users_with_role(
            strategy.department_id, strategy.role,
        )
    elif isinstance(strategy, DirectSupervisorStrategy):
        supervisor = directory.supervisor_of(submitter_id)
        found = (supervisor,) if supervisor is not None else ()
    else:
        raise TypeError(f"Unknown approver strategy: {strategy!r}")

    return tuple(dict.fromkeys(found))


def resolve_step_approvers(
    step: StepTemplate,
    submitter_id: UUID,
    directory: OrgDirectory,
    exclude_submitter: bool = True,
) -> tuple[UUID, ...]:
    """Concrete approvers for one template step.

    Raises:
        TemplateResolutionError: If no eligible approver remains.
    """
    candidates = candidates_for(step.strategy, submitter_id, directory)

    if step.is_parallel:
        if exclude_submitter:
            candidates = tuple(c for c in candidates if c != submitter_id)
        approvers = candidates
    else:
        approvers = candidates[:1]

    if not approvers:
        raise TemplateResolutionError(
            step_order=step.step_order,
            strategy=step.strategy.kind.value,
            reason="no eligible approver",
        )
    return approvers


@traced_engine("routing", "1.0", fingerprint_fields=("submitter_id", "exclude_submitter"))
def materialize_steps(
    template: TemplateSnapshot,
    *,
    submitter_id: UUID,
    directory: OrgDirectory,
    now: datetime,
    exclude_submitter: bool = True,
) -> tuple[MaterializedStep, ...]:
    """Resolve a template into the ordered step list of a new request.

    The lowest order group starts in review with ``started_at = now``;
    every later step is pending.  An empty template yields no steps.

    Raises:
        TemplateResolutionError: On any unresolvable step or undersized
            parallel group.  Nothing is returned partially.
    """
    ordered = sorted(template.steps, key=lambda s: s.step_order)
    if not ordered:
        return ()

    first_order = ordered[0].step_order
    resolved: list[tuple[StepTemplate, UUID]] = []
    for step in ordered:
        for approver_id in resolve_step_approvers(
            step, submitter_id, directory, exclude_submitter,
        ):
            resolved.append((step, approver_id))

    group_sizes = Counter(step.step_order for step, _ in resolved)
    for step in ordered:
        minimum = step.minimum_approvals if step.is_parallel else 1
        if group_sizes[step.step_order] < minimum:
            raise TemplateResolutionError(
                step_order=step.step_order,
                strategy=step.strategy.kind.value,
                reason=(
                    f"{group_sizes[step.step_order]} eligible approvers cannot "
                    f"meet minimum_approvals={minimum}"
                ),
            )

    return tuple(
        MaterializedStep(
            step_order=step.step_order,
            approver_id=approver_id,
            status=(
                StepStatus.IN_REVIEW if step.step_order == first_order
                else StepStatus.PENDING
            ),
            minimum_approvals=step.minimum_approvals if step.is_parallel else 1,
            parallel_group_id=step.parallel_group_id,
            started_at=now if step.step_order == first_order else None,
            requires_quiz=step.requires_quiz,
            passing_score=step.passing_score,
            escalation_timeout_seconds=step.escalation_timeout_seconds,
            escalation_user_id=step.escalation_user_id,
            step_template_id=step.step_template_id,
            quiz_questions=step.quiz_questions if step.requires_quiz else (),
        )
        for step, approver_id in resolved
    )
