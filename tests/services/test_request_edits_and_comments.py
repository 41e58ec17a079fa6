"""
Tests for form-data edits and the request comment thread.

Tests cover:
- Only the submitter edits, only while the request is draft or in review
- Each edit keeps the old and new form data and bumps the version
- A stale expected version is a conflict, not an overwrite
- Approvers who already decided hear about edits
- Comments: participants only, blank text refused, thread order
- A rejection is recorded in the thread with its reason
"""

from uuid import uuid4

import pytest

from portal_kernel.domain.activity import CommentOutcome, EditOutcome
from portal_kernel.domain.events import WorkflowEventType
from portal_kernel.domain.workflow import RequestDraft, RequestStatus, ResolutionOutcome
from portal_kernel.exceptions import ConcurrencyConflictError, StepNotFoundError


@pytest.fixture
def travel_request(workflow, users, two_step_quiz_template):
    request_id = workflow.submit(
        RequestDraft(
            template_id=two_step_quiz_template.template_id,
            submitter_id=users.submitter,
            form_data={"destination": "Oslo", "nights": 2},
        )
    )
    return workflow.get_request(request_id)


# =========================================================================
# Edits
# =========================================================================


class TestEditRequest:
    """edit_request guards and bookkeeping."""

    def test_submitter_edits_in_review_request(self, workflow, users, travel_request):
        result = workflow.edit_request(
            travel_request.request_id, users.submitter,
            {"destination": "Oslo", "nights": 3}, change_reason="extra night",
        )

        assert result.outcome == EditOutcome.EDITED
        assert result.success is True
        assert result.message == "request updated"
        request = workflow.get_request(travel_request.request_id)
        assert request.form_data == {"destination": "Oslo", "nights": 3}
        assert request.version == travel_request.version + 1
        assert request.status == RequestStatus.IN_REVIEW

        history = workflow.edit_history(travel_request.request_id)
        assert len(history) == 1
        assert history[0].old_form_data == {"destination": "Oslo", "nights": 2}
        assert history[0].new_form_data == {"destination": "Oslo", "nights": 3}
        assert history[0].edited_by_id == users.submitter
        assert history[0].change_reason == "extra night"
        assert history[0].edit_id == result.edit.edit_id

    def test_non_submitter_refused(self, workflow, users, travel_request):
        result = workflow.edit_request(travel_request.request_id, users.alice, {"nights": 9})

        assert result.outcome == EditOutcome.NOT_SUBMITTER
        assert result.success is False
        assert workflow.get_request(travel_request.request_id).form_data["nights"] == 2
        assert workflow.edit_history(travel_request.request_id) == ()

    def test_rejected_request_locked(self, workflow, users, travel_request):
        workflow.reject_step(
            travel_request.request_id, travel_request.steps[0].step_id, users.alice, "no",
        )

        result = workflow.edit_request(travel_request.request_id, users.submitter, {"nights": 1})

        assert result.outcome == EditOutcome.REQUEST_LOCKED
        assert result.request_status == RequestStatus.REJECTED
        assert workflow.edit_history(travel_request.request_id) == ()

    def test_awaiting_survey_request_locked(self, workflow, users, travel_request):
        step1, step2 = travel_request.steps
        workflow.approve_step(travel_request.request_id, step1.step_id, users.alice)
        held = workflow.approve_step(travel_request.request_id, step2.step_id, step2.approver_id)
        assert held.outcome == ResolutionOutcome.QUIZ_REQUIRED

        result = workflow.edit_request(travel_request.request_id, users.submitter, {"nights": 1})

        assert result.outcome == EditOutcome.REQUEST_LOCKED
        assert result.request_status == RequestStatus.AWAITING_SURVEY

    def test_stale_expected_version_conflicts(self, workflow, users, travel_request):
        version = travel_request.version
        workflow.edit_request(
            travel_request.request_id, users.submitter, {"nights": 3}, expected_version=version,
        )

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            workflow.edit_request(
                travel_request.request_id, users.submitter, {"nights": 5},
                expected_version=version,
            )

        assert exc_info.value.code == "CONCURRENCY_CONFLICT"
        assert workflow.get_request(travel_request.request_id).form_data == {"nights": 3}
        assert len(workflow.edit_history(travel_request.request_id)) == 1

    def test_edit_after_decision_notifies_decided_approvers(
        self, workflow, users, travel_request, recording_sink, deterministic_clock,
    ):
        workflow.approve_step(
            travel_request.request_id, travel_request.steps[0].step_id, users.alice,
        )
        deterministic_clock.advance(60)
        recording_sink.clear()

        result = workflow.edit_request(
            travel_request.request_id, users.submitter, {"nights": 4}, change_reason="longer",
        )

        edited = recording_sink.of_type(WorkflowEventType.REQUEST_EDITED)
        assert [e.recipient_id for e in edited] == [users.alice]
        assert edited[0].payload["edit_id"] == str(result.edit.edit_id)
        assert edited[0].payload["change_reason"] == "longer"

    def test_edit_before_any_decision_notifies_nobody(
        self, workflow, users, travel_request, recording_sink,
    ):
        recording_sink.clear()

        workflow.edit_request(travel_request.request_id, users.submitter, {"nights": 4})

        assert recording_sink.of_type(WorkflowEventType.REQUEST_EDITED) == []

    def test_edits_accumulate_in_order(
        self, workflow, users, travel_request, deterministic_clock,
    ):
        for nights in (3, 4):
            deterministic_clock.advance(60)
            workflow.edit_request(travel_request.request_id, users.submitter, {"nights": nights})

        history = workflow.edit_history(travel_request.request_id)

        assert [h.new_form_data["nights"] for h in history] == [3, 4]
        assert history[1].old_form_data == {"nights": 3}


# =========================================================================
# Comments
# =========================================================================


class TestComments:
    """add_comment and the rejection record."""

    def test_submitter_comment_notifies_approvers(
        self, workflow, users, travel_request, recording_sink,
    ):
        recording_sink.clear()

        result = workflow.add_comment(travel_request.request_id, users.submitter, "  urgent  ")

        assert result.outcome == CommentOutcome.ADDED
        assert result.comment.body == "urgent"
        assert result.comment.author_id == users.submitter
        recipients = {e.recipient_id for e in recording_sink.of_type(WorkflowEventType.COMMENT_ADDED)}
        assert recipients == {s.approver_id for s in travel_request.steps}
        assert users.submitter not in recipients

    def test_approver_comment_notifies_submitter(
        self, workflow, users, travel_request, recording_sink,
    ):
        recording_sink.clear()

        workflow.add_comment(travel_request.request_id, users.alice, "which hotel?")

        recipients = {e.recipient_id for e in recording_sink.of_type(WorkflowEventType.COMMENT_ADDED)}
        assert users.submitter in recipients
        assert users.alice not in recipients

    def test_outsider_refused(self, workflow, users, travel_request, recording_sink):
        recording_sink.clear()

        result = workflow.add_comment(travel_request.request_id, users.outsider, "hello")

        assert result.outcome == CommentOutcome.NOT_PARTICIPANT
        assert result.comment is None
        assert workflow.request_comments(travel_request.request_id) == ()
        assert recording_sink.events == []

    def test_blank_comment_refused(self, workflow, users, travel_request):
        result = workflow.add_comment(travel_request.request_id, users.submitter, "   ")

        assert result.outcome == CommentOutcome.EMPTY_COMMENT
        assert result.message == "comment is empty"

    def test_unknown_step(self, workflow, users, travel_request):
        with pytest.raises(StepNotFoundError):
            workflow.add_comment(
                travel_request.request_id, users.submitter, "hi", step_id=uuid4(),
            )

    def test_comment_leaves_version_alone(self, workflow, users, travel_request):
        workflow.add_comment(travel_request.request_id, users.submitter, "note")

        assert workflow.get_request(travel_request.request_id).version == travel_request.version

    def test_thread_oldest_first(self, workflow, users, travel_request, deterministic_clock):
        workflow.add_comment(travel_request.request_id, users.submitter, "first")
        deterministic_clock.advance(60)
        workflow.add_comment(
            travel_request.request_id, users.alice, "second",
            step_id=travel_request.steps[0].step_id,
        )

        thread = workflow.request_comments(travel_request.request_id)

        assert [c.body for c in thread] == ["first", "second"]
        assert thread[0].step_id is None
        assert thread[1].step_id == travel_request.steps[0].step_id

    def test_rejection_recorded_in_thread(self, workflow, users, travel_request):
        step1 = travel_request.steps[0]

        workflow.reject_step(travel_request.request_id, step1.step_id, users.alice, "missing receipt")

        thread = workflow.request_comments(travel_request.request_id)
        assert len(thread) == 1
        assert thread[0].body == "Rejected: missing receipt"
        assert thread[0].author_id == users.alice
        assert thread[0].step_id == step1.step_id

    def test_rejection_without_reason_recorded(self, workflow, users, travel_request):
        workflow.reject_step(
            travel_request.request_id, travel_request.steps[0].step_id, users.alice,
        )

        assert [c.body for c in workflow.request_comments(travel_request.request_id)] == ["Rejected"]

    def test_refused_rejection_writes_nothing(self, workflow, users, travel_request):
        workflow.reject_step(
            travel_request.request_id, travel_request.steps[0].step_id, users.outsider, "no",
        )

        assert workflow.request_comments(travel_request.request_id) == ()
