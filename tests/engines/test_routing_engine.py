"""
Tests for the pure routing engine.

Tests cover:
- candidates_for: every strategy kind, de-duplication, directory order
- resolve_step_approvers: sequential first-candidate, parallel fan-out,
  submitter exclusion, zero candidates
- materialize_steps: first order in review, later steps pending, group
  size validation, snapshot fields carried onto steps
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from portal_engines.routing import (
    candidates_for,
    materialize_steps,
    resolve_step_approvers,
)
from portal_kernel.domain.directory import InMemoryOrgDirectory
from portal_kernel.domain.workflow import (
    DepartmentRoleStrategy,
    DirectSupervisorStrategy,
    FixedUser,
    RoleGroupStrategy,
    RoleStrategy,
    StepStatus,
    StepTemplate,
    TemplateSnapshot,
)
from portal_kernel.exceptions import TemplateResolutionError

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_snapshot(*steps: StepTemplate) -> TemplateSnapshot:
    return TemplateSnapshot(template_id=uuid4(), name="t", steps=steps)


class TestCandidatesFor:
    """Tests for candidates_for."""

    def test_fixed_user(self):
        user = uuid4()

        assert candidates_for(FixedUser(user), uuid4(), InMemoryOrgDirectory()) == (user,)

    def test_role_in_registration_order(self):
        a, b = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_role(a, "hr").add_role(b, "hr")

        assert candidates_for(RoleStrategy("hr"), uuid4(), directory) == (a, b)

    def test_role_group(self):
        group, a = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_to_group(a, group)

        assert candidates_for(RoleGroupStrategy(group), uuid4(), directory) == (a,)

    def test_department_head(self):
        dept, head = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_department_role(head, dept, "head")

        result = candidates_for(DepartmentRoleStrategy(dept), uuid4(), directory)

        assert result == (head,)

    def test_department_other_role(self):
        dept, deputy = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_department_role(deputy, dept, "deputy")

        assert candidates_for(DepartmentRoleStrategy(dept, "deputy"), uuid4(), directory) == (deputy,)
        assert candidates_for(DepartmentRoleStrategy(dept), uuid4(), directory) == ()

    def test_direct_supervisor(self):
        submitter, boss = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().set_supervisor(submitter, boss)

        assert candidates_for(DirectSupervisorStrategy(), submitter, directory) == (boss,)

    def test_direct_supervisor_missing(self):
        assert candidates_for(DirectSupervisorStrategy(), uuid4(), InMemoryOrgDirectory()) == ()

    def test_unknown_strategy_raises(self):
        with pytest.raises(TypeError):
            candidates_for(object(), uuid4(), InMemoryOrgDirectory())


class TestResolveStepApprovers:
    """Tests for resolve_step_approvers."""

    def test_sequential_takes_first_candidate(self):
        a, b = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_role(a, "hr").add_role(b, "hr")
        step = StepTemplate(step_order=1, strategy=RoleStrategy("hr"))

        assert resolve_step_approvers(step, uuid4(), directory) == (a,)

    def test_parallel_fans_out(self):
        group, a, b = uuid4(), uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_to_group(a, group).add_to_group(b, group)
        step = StepTemplate(
            step_order=1, strategy=RoleGroupStrategy(group), parallel_group_id="g",
        )

        assert resolve_step_approvers(step, uuid4(), directory) == (a, b)

    def test_parallel_excludes_submitter(self):
        group, submitter, other = uuid4(), uuid4(), uuid4()
        directory = (
            InMemoryOrgDirectory()
            .add_to_group(submitter, group)
            .add_to_group(other, group)
        )
        step = StepTemplate(
            step_order=1, strategy=RoleGroupStrategy(group), parallel_group_id="g",
        )

        assert resolve_step_approvers(step, submitter, directory) == (other,)

    def test_parallel_keeps_submitter_when_exclusion_disabled(self):
        group, submitter = uuid4(), uuid4()
        directory = InMemoryOrgDirectory().add_to_group(submitter, group)
        step = StepTemplate(
            step_order=1, strategy=RoleGroupStrategy(group), parallel_group_id="g",
        )

        result = resolve_step_approvers(step, submitter, directory, exclude_submitter=False)

        assert result == (submitter,)

    def test_no_candidates_raises(self):
        step = StepTemplate(step_order=3, strategy=RoleStrategy("nobody"))

        with pytest.raises(TemplateResolutionError) as exc_info:
            resolve_step_approvers(step, uuid4(), InMemoryOrgDirectory())

        assert exc_info.value.step_order == 3
        assert exc_info.value.code == "TEMPLATE_RESOLUTION_FAILED"


class TestMaterializeSteps:
    """Tests for materialize_steps."""

    def test_first_order_in_review_rest_pending(self):
        a, b = uuid4(), uuid4()
        template = make_snapshot(
            StepTemplate(step_order=2, strategy=FixedUser(b)),
            StepTemplate(step_order=1, strategy=FixedUser(a)),
        )

        steps = materialize_steps(
            template, submitter_id=uuid4(), directory=InMemoryOrgDirectory(), now=NOW,
        )

        assert [s.approver_id for s in steps] == [a, b]
        assert steps[0].status == StepStatus.IN_REVIEW
        assert steps[0].started_at == NOW
        assert steps[1].status == StepStatus.PENDING
        assert steps[1].started_at is None

    def test_parallel_first_group_all_in_review(self):
        group, a, b, c = uuid4(), uuid4(), uuid4(), uuid4()
        directory = InMemoryOrgDirectory()
        for member in (a, b, c):
            directory.add_to_group(member, group)
        template = make_snapshot(
            StepTemplate(
                step_order=1, strategy=RoleGroupStrategy(group),
                parallel_group_id="g", minimum_approvals=2,
            ),
        )

        steps = materialize_steps(template, submitter_id=uuid4(), directory=directory, now=NOW)

        assert len(steps) == 3
        assert all(s.status == StepStatus.IN_REVIEW for s in steps)
        assert all(s.minimum_approvals == 2 for s in steps)

    def test_group_too_small_after_exclusion_raises(self):
        group, submitter, other = uuid4(), uuid4(), uuid4()
        directory = (
            InMemoryOrgDirectory()
            .add_to_group(submitter, group)
            .add_to_group(other, group)
        )
        template = make_snapshot(
            StepTemplate(
                step_order=1, strategy=RoleGroupStrategy(group),
                parallel_group_id="g", minimum_approvals=2,
            ),
        )

        with pytest.raises(TemplateResolutionError, match="minimum_approvals=2"):
            materialize_steps(template, submitter_id=submitter, directory=directory, now=NOW)

    def test_unresolvable_later_step_fails_whole_template(self):
        template = make_snapshot(
            StepTemplate(step_order=1, strategy=FixedUser(uuid4())),
            StepTemplate(step_order=2, strategy=RoleStrategy("ghost")),
        )

        with pytest.raises(TemplateResolutionError):
            materialize_steps(
                template, submitter_id=uuid4(), directory=InMemoryOrgDirectory(), now=NOW,
            )

    def test_empty_template_yields_no_steps(self):
        steps = materialize_steps(
            make_snapshot(), submitter_id=uuid4(), directory=InMemoryOrgDirectory(), now=NOW,
        )

        assert steps == ()

    def test_snapshot_fields_copied(self):
        escalate_to, template_step_id = uuid4(), uuid4()
        template = make_snapshot(
            StepTemplate(
                step_order=1,
                strategy=FixedUser(uuid4()),
                step_template_id=template_step_id,
                requires_quiz=True,
                passing_score=80,
                escalation_timeout_seconds=600,
                escalation_user_id=escalate_to,
            ),
        )

        (step,) = materialize_steps(
            template, submitter_id=uuid4(), directory=InMemoryOrgDirectory(), now=NOW,
        )

        assert step.requires_quiz is True
        assert step.passing_score == 80
        assert step.escalation_timeout_seconds == 600
        assert step.escalation_user_id == escalate_to
        assert step.step_template_id == template_step_id
