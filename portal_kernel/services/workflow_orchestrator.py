"""
WorkflowOrchestrator -- submission, step resolution, edits and comments.

Responsibility:
    Materializes a new request's step list from a template snapshot, and
    is the single mutating entry point for approve/reject decisions.  It
    walks the ordered/parallel step graph, decides which order group is
    active, and derives the request status after every change.  It also
    takes the submitter's form-data edits and the request's comments.

Architecture position:
    Kernel > Services -- imperative shell around the pure engines in
    ``portal_engines`` (routing, approval, delegation).  Flushes within the
    caller's transaction; never commits.

Invariants enforced:
    - Request status is always ``derive_request_status(steps)``.
    - ``completed_at`` is written exactly once, on reaching a terminal
      status.
    - Only steps of the currently active order group can be decided;
      pending steps are ``STEP_NOT_ACTIVE`` regardless of timing.
    - Guard order on resolve: terminal step -> ALREADY_RESOLVED;
      not active -> STEP_NOT_ACTIVE; actor neither the effective approver
      nor their delegate at decision time -> UNAUTHORIZED_APPROVER; on
      approve, the quiz gate.
    - A step requiring a quiz is never approved while ``quiz_passed`` is
      not True.
    - Every change is saved through ``RequestStore.save_request`` with the
      version loaded at the start of the call, so a decision is never
      applied to a stale step list.
    - A cancellation signal is honoured only before anything is written.
    - A rejection is also written to the comment thread, with its reason.
    - Edits go through the same version token and leave an edit-history
      row holding the old and new form data.

Failure modes:
    - RequestNotFoundError / StepNotFoundError for unknown ids.
    - TemplateNotFoundError / TemplateResolutionError on submission;
      nothing is persisted.
    - ConcurrencyConflictError when another writer got there first.
    - OperationCancelledError when the cancel event is set before a write.

Audit relevance:
    Every decision records ``decided_by_id`` (the actual actor, which may
    be a delegate or escalation target) and emits a WorkflowEvent that the
    caller dispatches after commit.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from portal_engines.approval import (
    derive_request_status,
    evaluate_group,
    is_authorized,
    next_order,
)
from portal_engines.routing import materialize_steps
from portal_kernel.domain.activity import (
    EDITABLE_REQUEST_STATUSES,
    CommentOutcome,
    CommentResult,
    EditOutcome,
    EditResult,
)
from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.directory import DelegationDirectory, OrgDirectory
from portal_kernel.domain.events import WorkflowEvent, WorkflowEventType
from portal_kernel.domain.workflow import (
    ACTIVE_STEP_STATUSES,
    TERMINAL_REQUEST_STATUSES,
    TERMINAL_STEP_STATUSES,
    GroupOutcome,
    RequestDraft,
    RequestStatus,
    ResolutionOutcome,
    ResolutionResult,
    StepDecision,
    StepStatus,
    SubmissionResult,
)
from portal_kernel.exceptions import OperationCancelledError, StepNotFoundError
from portal_kernel.logging_config import LogContext, get_logger
from portal_kernel.models.request import (
    ApprovalStepModel,
    RequestCommentModel,
    RequestEditHistoryModel,
    RequestModel,
)
from portal_kernel.services.request_store import RequestStore
from portal_kernel.services.template_service import TemplateService

logger = get_logger("services.orchestrator")


class WorkflowOrchestrator:
    """Drives one request at a time through its approval steps."""

    def __init__(
        self,
        session: Session,
        org_directory: OrgDirectory,
        delegation_directory: DelegationDirectory,
        clock: Clock | None = None,
        exclude_submitter_from_fan_out: bool = True,
    ):
        self.session = session
        self._org_directory = org_directory
        self._delegations = delegation_directory
        self._clock = clock or SystemClock()
        self._exclude_submitter = exclude_submitter_from_fan_out
        self._store = RequestStore(session)
        self._templates = TemplateService(session, self._clock)

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(self, draft: RequestDraft) -> SubmissionResult:
        """Create a request and materialize its steps from the template.

        The first order group starts in review; later steps are pending.
        A template with no steps approves the request immediately.

        Raises:
            TemplateNotFoundError: Unknown or inactive template.
            TemplateResolutionError: A step has no eligible approver.
        """
        template = self._templates.get_snapshot(draft.template_id)
        now = self._clock.now()

        materialized = materialize_steps(
            template,
            submitter_id=draft.submitter_id,
            directory=self._org_directory,
            now=now,
            exclude_submitter=self._exclude_submitter,
        )

        request = RequestModel(
            template_id=template.template_id,
            submitter_id=draft.submitter_id,
            submitted_at=now,
            priority=draft.priority.value,
            form_data=dict(draft.form_data),
            status=RequestStatus.DRAFT.value,
            version=1,
        )
        for position, step in enumerate(materialized):
            request.steps.append(
                ApprovalStepModel(
                    position=position,
                    step_order=step.step_order,
                    approver_id=step.approver_id,
                    status=step.status.value,
                    minimum_approvals=step.minimum_approvals,
                    parallel_group_id=step.parallel_group_id,
                    requires_quiz=step.requires_quiz,
                    passing_score=step.passing_score,
                    escalation_timeout_seconds=step.escalation_timeout_seconds,
                    escalation_user_id=step.escalation_user_id,
                    step_template_id=step.step_template_id,
                    quiz_snapshot=(
                        ApprovalStepModel.snapshot_questions(step.quiz_questions)
                        if step.requires_quiz else None
                    ),
                    created_at=now,
                    started_at=step.started_at,
                )
            )

        status = derive_request_status(request.steps)
        request.status = status.value
        if status in TERMINAL_REQUEST_STATUSES:
            request.completed_at = now

        self._store.add_request(request)

        events = [
            self._event(WorkflowEventType.STEP_ACTIVATED, request, now, step=s)
            for s in request.steps
            if s.status == StepStatus.IN_REVIEW.value
        ]
        if request.completed_at is not None:
            events.append(self._completion_event(request, now))

        logger.info(
            "request_submitted",
            extra={
                "request_id": str(request.id),
                "template_id": str(template.template_id),
                "submitter_id": str(draft.submitter_id),
                "step_count": len(request.steps),
                "status": status.value,
            },
        )
        return SubmissionResult(
            request_id=request.id,
            status=status,
            step_ids=tuple(s.id for s in request.steps),
            events=tuple(events),
        )

    # -------------------------------------------------------------------------
    # Resolve
    # -------------------------------------------------------------------------

    def resolve_step(
        self,
        request_id: UUID,
        step_id: UUID,
        decision: StepDecision,
        actor_id: UUID,
        comment: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ResolutionResult:
        """Approve or reject one step.

        Business-rule refusals come back as a ResolutionResult whose
        outcome says why; nothing is written for them except the move to
        ``requires_survey`` when an approval hits an unanswered quiz.
        """
        decision = StepDecision(decision)
        with LogContext.bind(request_id=request_id, step_id=step_id, actor_id=actor_id):
            request = self._store.get_request_with_steps(request_id)
            step = self._find_step(request, step_id)
            expected_version = request.version
            status = StepStatus(step.status)

            if status in TERMINAL_STEP_STATUSES:
                return self._unchanged(ResolutionOutcome.ALREADY_RESOLVED, request, step)
            if status not in ACTIVE_STEP_STATUSES:
                return self._unchanged(ResolutionOutcome.STEP_NOT_ACTIVE, request, step)

            now = self._clock.now()
            effective_approver = step.effective_approver_id
            acting_user = self._delegations.resolve_acting_user(effective_approver, now)
            if not is_authorized(actor_id, effective_approver, acting_user):
                logger.warning(
                    "unauthorized_approver",
                    extra={
                        "effective_approver_id": str(effective_approver),
                        "decision": decision.value,
                    },
                )
                return self._unchanged(ResolutionOutcome.UNAUTHORIZED_APPROVER, request, step)

            if decision == StepDecision.APPROVE and step.requires_quiz:
                if step.quiz_passed is None:
                    return self._hold_for_quiz(
                        request, step, expected_version, cancel_event,
                    )
                if step.quiz_passed is False:
                    return self._unchanged(ResolutionOutcome.QUIZ_FAILED, request, step)

            self._check_cancelled(cancel_event, request)

            step.decided_by_id = actor_id
            step.comment = comment
            step.finished_at = now

            if decision == StepDecision.APPROVE:
                outcome, events, activated = self._apply_approval(request, step, now)
            else:
                outcome, events = self._apply_rejection(request, step, now)
                activated = ()

            events.extend(self._finalize(request, now))
            self._check_cancelled(cancel_event, request)
            if decision == StepDecision.REJECT:
                reason = f"Rejected: {comment}" if comment else "Rejected"
                self._write_comment(request, actor_id, reason, now, step_id=step.id)
            self._store.save_request(request, expected_version)

            logger.info(
                "step_resolved",
                extra={
                    "decision": decision.value,
                    "outcome": outcome.value,
                    "request_status": request.status,
                    "decided_by_id": str(actor_id),
                    "on_behalf_of": (
                        str(effective_approver) if actor_id != effective_approver else None
                    ),
                    "activated_steps": len(activated),
                },
            )
            return ResolutionResult(
                outcome=outcome,
                request_id=request.id,
                step_id=step.id,
                request_status=RequestStatus(request.status),
                activated_step_ids=tuple(activated),
                events=tuple(events),
            )

    # -------------------------------------------------------------------------
    # Edits and comments
    # -------------------------------------------------------------------------

    def edit_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        form_data: Mapping[str, Any],
        change_reason: str | None = None,
        expected_version: int | None = None,
    ) -> EditResult:
        """Replace the request's form data, keeping the previous copy.

        ``expected_version`` is the version the caller's edit was based on.
        When given, a request changed since then is a conflict rather than
        an overwrite.  Approvers who already decided are notified.

        Raises:
            RequestNotFoundError: Unknown request.
            ConcurrencyConflictError: Stale ``expected_version`` or a
                concurrent writer.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            request = self._store.get_request_with_steps(request_id)
            if expected_version is None:
                expected_version = request.version

            if actor_id != request.submitter_id:
                logger.warning("request_edit_by_non_submitter")
                return self._edit_refused(EditOutcome.NOT_SUBMITTER, request)
            if RequestStatus(request.status) not in EDITABLE_REQUEST_STATUSES:
                return self._edit_refused(EditOutcome.REQUEST_LOCKED, request)

            now = self._clock.now()
            history = RequestEditHistoryModel(
                request_id=request.id,
                edited_by_id=actor_id,
                edited_at=now,
                old_form_data=dict(request.form_data or {}),
                new_form_data=dict(form_data),
                change_reason=change_reason,
            )
            self.session.add(history)
            request.form_data = dict(form_data)
            self._store.save_request(request, expected_version)

            reviewers = dict.fromkeys(
                s.decided_by_id or s.approver_id
                for s in request.steps
                if s.status in (StepStatus.APPROVED.value, StepStatus.REJECTED.value)
            )
            events = tuple(
                WorkflowEvent(
                    event_type=WorkflowEventType.REQUEST_EDITED,
                    request_id=request.id,
                    occurred_at=now,
                    recipient_id=reviewer_id,
                    payload={"edit_id": str(history.id), "change_reason": change_reason},
                )
                for reviewer_id in reviewers
            )
            logger.info("request_edited", extra={"notified": len(events)})
            return EditResult(
                outcome=EditOutcome.EDITED,
                request_id=request.id,
                request_status=RequestStatus(request.status),
                edit=history.to_dto(),
                events=events,
            )

    def add_comment(
        self,
        request_id: UUID,
        author_id: UUID,
        body: str,
        step_id: UUID | None = None,
    ) -> CommentResult:
        """Append a comment to the request's thread.

        The submitter and anyone who is or was an approver on the request
        may comment.  Comments do not touch the request's version.

        Raises:
            RequestNotFoundError / StepNotFoundError for unknown ids.
        """
        with LogContext.bind(request_id=request_id, step_id=step_id, actor_id=author_id):
            request = self._store.get_request_with_steps(request_id)
            if step_id is not None:
                self._find_step(request, step_id)

            approvers = dict.fromkeys(
                user_id
                for s in request.steps
                for user_id in (s.approver_id, s.escalated_to_id, s.decided_by_id)
                if user_id is not None
            )
            if author_id != request.submitter_id and author_id not in approvers:
                logger.warning("comment_by_non_participant")
                return CommentResult(CommentOutcome.NOT_PARTICIPANT, request.id)
            text = (body or "").strip()
            if not text:
                return CommentResult(CommentOutcome.EMPTY_COMMENT, request.id)

            now = self._clock.now()
            comment = self._write_comment(request, author_id, text, now, step_id=step_id)
            self.session.flush()

            recipients = dict.fromkeys([request.submitter_id, *approvers])
            recipients.pop(author_id, None)
            events = tuple(
                WorkflowEvent(
                    event_type=WorkflowEventType.COMMENT_ADDED,
                    request_id=request.id,
                    occurred_at=now,
                    step_id=step_id,
                    recipient_id=recipient_id,
                    payload={"comment_id": str(comment.id), "author_id": str(author_id)},
                )
                for recipient_id in recipients
            )
            logger.info("comment_added", extra={"notified": len(events)})
            return CommentResult(
                outcome=CommentOutcome.ADDED,
                request_id=request.id,
                comment=comment.to_dto(),
                events=events,
            )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _write_comment(
        self,
        request: RequestModel,
        author_id: UUID,
        body: str,
        now: datetime,
        step_id: UUID | None = None,
    ) -> RequestCommentModel:
        comment = RequestCommentModel(
            request_id=request.id,
            step_id=step_id,
            author_id=author_id,
            body=body,
            created_at=now,
        )
        self.session.add(comment)
        return comment

    def _edit_refused(self, outcome: EditOutcome, request: RequestModel) -> EditResult:
        logger.info("request_edit_refused", extra={"outcome": outcome.value})
        return EditResult(
            outcome=outcome,
            request_id=request.id,
            request_status=RequestStatus(request.status),
        )

    def _find_step(self, request: RequestModel, step_id: UUID) -> ApprovalStepModel:
        for s in request.steps:
            if s.id == step_id:
                return s
        raise StepNotFoundError(str(request.id), str(step_id))

    def _check_cancelled(
        self, cancel_event: threading.Event | None, request: RequestModel,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("resolve_cancelled")
            raise OperationCancelledError("resolve_step", str(request.id))

    def _hold_for_quiz(
        self,
        request: RequestModel,
        step: ApprovalStepModel,
        expected_version: int,
        cancel_event: threading.Event | None,
    ) -> ResolutionResult:
        """Park an unanswered quiz step in requires_survey."""
        if step.status == StepStatus.IN_REVIEW.value:
            self._check_cancelled(cancel_event, request)
            step.status = StepStatus.REQUIRES_SURVEY.value
            request.status = derive_request_status(request.steps).value
            self._store.save_request(request, expected_version)
            logger.info("step_awaiting_quiz")
        return ResolutionResult(
            outcome=ResolutionOutcome.QUIZ_REQUIRED,
            request_id=request.id,
            step_id=step.id,
            request_status=RequestStatus(request.status),
        )

    def _apply_approval(
        self, request: RequestModel, step: ApprovalStepModel, now: datetime,
    ) -> tuple[ResolutionOutcome, list[WorkflowEvent], list[UUID]]:
        step.status = StepStatus.APPROVED.value
        events = [
            self._event(
                WorkflowEventType.STEP_APPROVED, request, now,
                step=step, recipient_id=request.submitter_id,
            )
        ]

        group = [s for s in request.steps if s.step_order == step.step_order]
        evaluation = evaluate_group(group)
        if evaluation.outcome == GroupOutcome.OPEN:
            return ResolutionOutcome.APPROVED_AWAITING_GROUP, events, []

        # Threshold reached: close the members nobody needs any more.
        for member in group:
            if member.status in (
                StepStatus.PENDING.value,
                StepStatus.IN_REVIEW.value,
                StepStatus.REQUIRES_SURVEY.value,
            ):
                member.status = StepStatus.SUPERSEDED.value
                member.finished_at = now

        following = next_order(request.steps, step.step_order)
        if following is None:
            return ResolutionOutcome.APPROVED_COMPLETE, events, []

        activated: list[UUID] = []
        for s in request.steps:
            if s.step_order == following and s.status == StepStatus.PENDING.value:
                s.status = StepStatus.IN_REVIEW.value
                s.started_at = now
                activated.append(s.id)
                events.append(
                    self._event(WorkflowEventType.STEP_ACTIVATED, request, now, step=s)
                )
        return ResolutionOutcome.APPROVED_ADVANCED, events, activated

    def _apply_rejection(
        self, request: RequestModel, step: ApprovalStepModel, now: datetime,
    ) -> tuple[ResolutionOutcome, list[WorkflowEvent]]:
        step.status = StepStatus.REJECTED.value
        events = [
            self._event(
                WorkflowEventType.STEP_REJECTED, request, now,
                step=step, recipient_id=request.submitter_id,
            )
        ]

        # The request halts: active siblings close, unreached steps stay pending.
        for s in request.steps:
            if s.status in (StepStatus.IN_REVIEW.value, StepStatus.REQUIRES_SURVEY.value):
                s.status = StepStatus.SUPERSEDED.value
                s.finished_at = now
        return ResolutionOutcome.REJECTED_HALTED, events

    def _finalize(self, request: RequestModel, now: datetime) -> list[WorkflowEvent]:
        """Re-derive the request status; stamp completion once."""
        status = derive_request_status(request.steps)
        request.status = status.value
        if status in TERMINAL_REQUEST_STATUSES and request.completed_at is None:
            request.completed_at = now
            logger.info("request_completed", extra={"status": status.value})
            return [self._completion_event(request, now)]
        return []

    def _unchanged(
        self,
        outcome: ResolutionOutcome,
        request: RequestModel,
        step: ApprovalStepModel,
    ) -> ResolutionResult:
        logger.info("step_resolution_refused", extra={"outcome": outcome.value})
        return ResolutionResult(
            outcome=outcome,
            request_id=request.id,
            step_id=step.id,
            request_status=RequestStatus(request.status),
        )

    def _event(
        self,
        event_type: WorkflowEventType,
        request: RequestModel,
        now: datetime,
        step: ApprovalStepModel | None = None,
        recipient_id: UUID | None = None,
    ) -> WorkflowEvent:
        if recipient_id is None and step is not None:
            recipient_id = step.effective_approver_id
        payload = {}
        if step is not None:
            payload = {"step_order": step.step_order, "step_status": step.status}
        return WorkflowEvent(
            event_type=event_type,
            request_id=request.id,
            occurred_at=now,
            step_id=step.id if step is not None else None,
            recipient_id=recipient_id,
            payload=payload,
        )

    def _completion_event(self, request: RequestModel, now: datetime) -> WorkflowEvent:
        return WorkflowEvent(
            event_type=WorkflowEventType.REQUEST_COMPLETED,
            request_id=request.id,
            occurred_at=now,
            recipient_id=request.submitter_id,
            payload={"request_status": request.status},
        )
