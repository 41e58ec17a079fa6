"""
Concurrency tests for the request version token.

Tests cover:
- Interleaved sessions: the second writer gets ConcurrencyConflictError
- Facade retry: conflicts are retried, then re-raised once exhausted
- Sweep vs. approval: a decision landing after the scan wins
- Threaded races on a parallel group and on a single step
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from portal_kernel.domain.events import WorkflowEventType
from portal_kernel.domain.workflow import (
    RequestDraft,
    RequestStatus,
    ResolutionOutcome,
    StepDecision,
    StepStatus,
)
from portal_kernel.exceptions import ConcurrencyConflictError
from portal_kernel.services.delegation_directory import SqlDelegationDirectory
from portal_kernel.services.escalation_sweeper import EscalationSweeper
from portal_kernel.services.request_store import RequestStore
from portal_kernel.services.workflow_orchestrator import WorkflowOrchestrator


def submit(workflow, template, submitter):
    request_id = workflow.submit(
        RequestDraft(template_id=template.template_id, submitter_id=submitter)
    )
    return request_id, workflow.get_request(request_id)


def orchestrator(session, org_directory, clock):
    return WorkflowOrchestrator(
        session, org_directory, SqlDelegationDirectory(session), clock=clock,
    )


class TestVersionToken:
    """Compare-and-set on the request version."""

    def test_interleaved_writers(
        self, workflow, users, parallel_template, session_factory, org_directory,
        deterministic_clock,
    ):
        request_id, request = submit(workflow, parallel_template, users.submitter)
        bob_step, carol_step = request.steps[0], request.steps[1]

        first = session_factory()
        second = session_factory()
        try:
            # Both load version 1 before either writes.
            stale = RequestStore(second).get_request_with_steps(request_id)
            stale_version = stale.version
            stale_carol = next(s for s in stale.steps if s.id == carol_step.step_id)

            orchestrator(first, org_directory, deterministic_clock).resolve_step(
                request_id, bob_step.step_id, StepDecision.APPROVE, users.bob,
            )
            first.commit()

            stale_carol.status = StepStatus.APPROVED.value
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                RequestStore(second).save_request(stale, stale_version)
            second.rollback()
        finally:
            first.close()
            second.close()

        assert exc_info.value.expected_version == 1
        after = workflow.get_request(request_id)
        assert after.version == 2
        assert after.steps[1].status == StepStatus.IN_REVIEW

    def test_version_increments_per_write(self, workflow, users, two_step_quiz_template):
        request_id, request = submit(workflow, two_step_quiz_template, users.submitter)

        workflow.approve_step(request_id, request.steps[0].step_id, users.alice)

        assert workflow.get_request(request_id).version == request.version + 1


class TestFacadeRetry:
    """ApprovalWorkflowService reloads and retries on conflicts."""

    def test_conflict_retried_then_succeeds(
        self, workflow, users, two_step_quiz_template, monkeypatch, captured_logs,
    ):
        request_id, request = submit(workflow, two_step_quiz_template, users.submitter)
        original_save = RequestStore.save_request
        calls = {"n": 0}

        def flaky_save(self, req, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConcurrencyConflictError(str(req.id), expected_version)
            return original_save(self, req, expected_version)

        monkeypatch.setattr(RequestStore, "save_request", flaky_save)

        result = workflow.approve_step(request_id, request.steps[0].step_id, users.alice)

        assert result.outcome == ResolutionOutcome.APPROVED_ADVANCED
        assert calls["n"] == 2
        assert any(r["message"] == "concurrency_conflict_retry" for r in captured_logs())

    def test_retries_exhausted_reraises(
        self, workflow, users, two_step_quiz_template, monkeypatch, recording_sink,
    ):
        request_id, request = submit(workflow, two_step_quiz_template, users.submitter)
        recording_sink.clear()
        calls = {"n": 0}

        def always_conflict(self, req, expected_version):
            calls["n"] += 1
            raise ConcurrencyConflictError(str(req.id), expected_version)

        monkeypatch.setattr(RequestStore, "save_request", always_conflict)

        with pytest.raises(ConcurrencyConflictError):
            workflow.approve_step(request_id, request.steps[0].step_id, users.alice)

        assert calls["n"] == workflow.config.workflow.max_conflict_retries + 1
        assert recording_sink.events == []
        monkeypatch.undo()
        assert workflow.get_request(request_id).steps[0].status == StepStatus.IN_REVIEW


class TestSweepRace:
    """A decision that lands between scan and escalation wins."""

    def test_approval_after_scan_is_not_escalated(
        self, workflow, users, escalating_template, session_factory, deterministic_clock,
    ):
        request_id, request = submit(workflow, escalating_template, users.submitter)
        step_id = request.steps[0].step_id
        deterministic_clock.advance_hours(2)

        class ApprovalAfterScan(EscalationSweeper):
            def _scan(self, now):
                found = super()._scan(now)
                workflow.approve_step(request_id, step_id, users.bob)
                return found

        sweeper = ApprovalAfterScan(
            session_factory, clock=deterministic_clock, default_escalation_user_id=users.admin,
        )

        report = sweeper.run_sweep()

        assert report.escalated == 0
        assert report.skipped_stale == 1
        step = workflow.get_request(request_id).steps[0]
        assert step.status == StepStatus.APPROVED
        assert step.escalated_at is None

    def test_conflicting_sweep_counts_conflict(
        self, workflow, users, escalating_template, session_factory, deterministic_clock,
        monkeypatch,
    ):
        submit(workflow, escalating_template, users.submitter)
        deterministic_clock.advance_hours(2)

        def conflict(self, req, expected_version):
            raise ConcurrencyConflictError(str(req.id), expected_version)

        monkeypatch.setattr(RequestStore, "save_request", conflict)
        sweeper = EscalationSweeper(
            session_factory, clock=deterministic_clock, default_escalation_user_id=users.admin,
        )

        report = sweeper.run_sweep()

        assert report.conflicts == 1
        assert report.escalated == 0


@pytest.mark.slow_locks
class TestThreadedRaces:
    """Real threads racing through the facade."""

    def test_parallel_members_approve_at_once(
        self, workflow, users, parallel_template, recording_sink,
    ):
        request_id, request = submit(workflow, parallel_template, users.submitter)
        recording_sink.clear()
        barrier = threading.Barrier(2)

        def approve(step, actor):
            barrier.wait()
            return workflow.approve_step(request_id, step.step_id, actor)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(approve, request.steps[0], users.bob),
                pool.submit(approve, request.steps[1], users.carol),
            ]
            outcomes = sorted(f.result().outcome.value for f in futures)

        assert outcomes == sorted([
            ResolutionOutcome.APPROVED_AWAITING_GROUP.value,
            ResolutionOutcome.APPROVED_ADVANCED.value,
        ])
        after = workflow.get_request(request_id)
        assert after.status == RequestStatus.IN_REVIEW
        assert after.steps[3].status == StepStatus.IN_REVIEW
        assert len(recording_sink.of_type(WorkflowEventType.STEP_ACTIVATED)) == 1

    def test_double_submit_of_one_decision(self, workflow, users, two_step_quiz_template):
        request_id, request = submit(workflow, two_step_quiz_template, users.submitter)
        barrier = threading.Barrier(4)

        def approve():
            barrier.wait()
            return workflow.approve_step(request_id, request.steps[0].step_id, users.alice)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = [f.result() for f in [pool.submit(approve) for _ in range(4)]]

        winners = [r for r in results if r.outcome == ResolutionOutcome.APPROVED_ADVANCED]
        assert len(winners) == 1
        assert all(
            r.outcome == ResolutionOutcome.ALREADY_RESOLVED for r in results if r not in winners
        )
        assert workflow.get_request(request_id).version == request.version + 1
