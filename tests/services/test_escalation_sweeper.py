"""
Tests for the escalation sweep and its scheduler.

Tests cover:
- Overdue steps are reassigned to their escalation target, status untouched
- Sweeps are idempotent: escalated_at is set once
- The original approver loses authority, the target gains it
- Configured default target and the no-target skip
- SLA reminders throttled by the cooldown store
- EscalationScheduler tick/start/stop
"""

import time
from uuid import uuid4

import pytest

from portal_config import EngineConfig
from portal_config.schema import EscalationSettings, NotificationSettings
from portal_kernel.domain.events import WorkflowEventType
from portal_kernel.domain.workflow import (
    FixedUser,
    RequestDraft,
    RequestStatus,
    ResolutionOutcome,
    StepStatus,
    StepTemplate,
    TemplateDefinition,
)
from portal_kernel.services.escalation_scheduler import EscalationScheduler
from portal_services import ApprovalWorkflowService


def submit(workflow, template, submitter):
    request_id = workflow.submit(
        RequestDraft(template_id=template.template_id, submitter_id=submitter)
    )
    return request_id, workflow.get_request(request_id)


class TestEscalationSweep:
    """Step 1 (bob) escalates to carol after one hour."""

    def test_not_due_before_timeout(self, workflow, users, escalating_template, deterministic_clock):
        submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance(3600)

        report = workflow.run_escalation_sweep()

        assert report.escalated == 0
        assert report.scanned == 1

    def test_escalates_overdue_step(
        self, workflow, users, escalating_template, deterministic_clock, recording_sink,
    ):
        request_id, request = submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance_hours(2)
        recording_sink.clear()

        report = workflow.run_escalation_sweep()

        assert report.escalated == 1
        assert report.escalated_step_ids == (request.steps[0].step_id,)
        step = workflow.get_request(request_id).steps[0]
        assert step.status == StepStatus.IN_REVIEW
        assert step.escalated_to_id == users.carol
        assert step.escalated_at == deterministic_clock.now()
        assert step.effective_approver_id == users.carol
        escalated = recording_sink.of_type(WorkflowEventType.STEP_ESCALATED)
        assert [e.recipient_id for e in escalated] == [users.carol]

    def test_second_sweep_is_a_no_op(self, workflow, users, escalating_template, deterministic_clock):
        request_id, _ = submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance_hours(2)
        workflow.run_escalation_sweep()
        first_stamp = workflow.get_request(request_id).steps[0].escalated_at
        version = workflow.get_request(request_id).version

        deterministic_clock.advance_hours(5)
        report = workflow.run_escalation_sweep()

        assert report.escalated == 0
        after = workflow.get_request(request_id)
        assert after.steps[0].escalated_at == first_stamp
        assert after.version == version

    def test_escalation_moves_authority(self, workflow, users, escalating_template, deterministic_clock):
        request_id, request = submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance_hours(2)
        workflow.run_escalation_sweep()
        step_id = request.steps[0].step_id

        original = workflow.approve_step(request_id, step_id, users.bob)
        target = workflow.approve_step(request_id, step_id, users.carol)

        assert original.outcome == ResolutionOutcome.UNAUTHORIZED_APPROVER
        assert target.outcome == ResolutionOutcome.APPROVED_ADVANCED
        assert [s.step_id for s in workflow.pending_approvals(users.carol)] == []

    def test_approval_before_sweep_prevents_escalation(
        self, workflow, users, escalating_template, deterministic_clock,
    ):
        request_id, request = submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance_hours(2)
        workflow.approve_step(request_id, request.steps[0].step_id, users.bob)

        report = workflow.run_escalation_sweep()

        assert report.escalated == 0
        assert workflow.get_request(request_id).steps[0].escalated_at is None

    def test_terminal_request_never_escalates(
        self, workflow, users, escalating_template, deterministic_clock,
    ):
        request_id, request = submit(workflow, escalating_template, users.submitter)
        workflow.reject_step(request_id, request.steps[0].step_id, users.bob)
        deterministic_clock.advance_hours(2)

        report = workflow.run_escalation_sweep()

        assert report.escalated == 0
        assert workflow.get_request(request_id).status == RequestStatus.REJECTED


class TestEscalationTargets:
    """Default target from configuration and the missing-target skip."""

    @pytest.fixture
    def untargeted_template(self, workflow, users):
        return workflow.create_template(
            TemplateDefinition(
                name=f"stalled-{uuid4()}",
                steps=(
                    StepTemplate(
                        step_order=1, strategy=FixedUser(users.bob),
                        escalation_timeout_seconds=60,
                    ),
                ),
            )
        )

    def test_default_target_used(self, workflow, users, untargeted_template, deterministic_clock):
        request_id, _ = submit(workflow, untargeted_template, users.submitter)
        deterministic_clock.advance(120)

        workflow.run_escalation_sweep()

        assert workflow.get_request(request_id).steps[0].escalated_to_id == users.admin

    def test_no_target_skipped(
        self, session_factory, org_directory, dispatcher, deterministic_clock, users,
        untargeted_template, captured_logs,
    ):
        config = EngineConfig(
            escalation=EscalationSettings(default_escalation_user_id=None),
            notifications=NotificationSettings(async_dispatch=False),
        )
        bare = ApprovalWorkflowService(
            session_factory, org_directory, config=config,
            clock=deterministic_clock, dispatcher=dispatcher,
        )
        request_id, _ = submit(bare, untargeted_template, users.submitter)
        deterministic_clock.advance(120)

        report = bare.run_escalation_sweep()

        assert report.escalated == 0
        assert report.skipped_no_target == 1
        assert bare.get_request(request_id).steps[0].escalated_at is None
        assert any(r["message"] == "escalation_target_missing" for r in captured_logs())


class TestSlaReminders:
    """STEP_OVERDUE reminders after 72 hours, once per cooldown window."""

    def test_reminder_throttled(
        self, workflow, users, two_step_quiz_template, deterministic_clock, recording_sink,
    ):
        submit(workflow, two_step_quiz_template, users.submitter)
        recording_sink.clear()

        deterministic_clock.advance_hours(71)
        assert workflow.run_escalation_sweep().reminders_sent == 0

        deterministic_clock.advance_hours(2)
        first = workflow.run_escalation_sweep()
        deterministic_clock.advance_hours(1)
        second = workflow.run_escalation_sweep()

        assert first.reminders_sent == 1
        assert second.reminders_sent == 0
        overdue = recording_sink.of_type(WorkflowEventType.STEP_OVERDUE)
        assert [e.recipient_id for e in overdue] == [users.alice]

        deterministic_clock.advance_hours(24)
        assert workflow.run_escalation_sweep().reminders_sent == 1


class TestEscalationScheduler:
    """Background polling loop."""

    def test_tick_runs_one_sweep(self, workflow, users, escalating_template, deterministic_clock):
        request_id, _ = submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance_hours(2)

        report = workflow.scheduler().tick()

        assert report.escalated == 1

    def test_start_and_stop(self, workflow):
        scheduler = workflow.scheduler()

        scheduler.start()
        try:
            assert scheduler.is_running is True
        finally:
            scheduler.stop(timeout=5)

        assert scheduler.is_running is False

    def test_failing_sweep_is_logged_not_raised(self, captured_logs):
        class BrokenSweeper:
            def run_sweep(self, now):
                raise RuntimeError("db down")

        scheduler = EscalationScheduler(BrokenSweeper(), interval_seconds=0.01)
        scheduler.start()
        time.sleep(0.05)
        scheduler.stop(timeout=5)

        assert any(r["message"] == "escalation_tick_failed" for r in captured_logs())
