"""
ApprovalWorkflowService -- the exposed surface of the approval engine.

Responsibility:
    Wires kernel services together and owns the unit of work for every
    exposed operation: submit, approve/reject, form-data edits, comments,
    quiz answers, escalation sweep, bulk approval, template creation and
    the read-side inbox.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  This is the
    only layer that commits ordinary request transactions (the escalation
    sweeper commits its own).  Callers are HTTP handlers and schedulers.

Invariants enforced:
    - One fresh session per attempt; a failed attempt is rolled back in
      full, so a rejection is never partially applied.
    - ConcurrencyConflictError: reload and retry the whole operation up to
      ``workflow.max_conflict_retries`` times, then re-raise.  State is
      never merged.
    - Notifications are dispatched only after the transaction that
      produced them has committed.

Failure modes:
    - TemplateResolutionError / TemplateNotFoundError from ``submit``.
    - RequestNotFoundError / StepNotFoundError for unknown ids.
    - ConcurrencyConflictError once retries are exhausted.
    - OperationCancelledError when the caller's cancel event is set.
    - Infrastructure errors propagate after rollback.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from portal_config import EngineConfig, get_engine_config
from portal_kernel.domain.activity import (
    CommentResult,
    EditResult,
    RequestComment,
    RequestEdit,
)
from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.directory import OrgDirectory
from portal_kernel.domain.quiz import QuizSubmissionResult
from portal_kernel.domain.workflow import (
    ApprovalRequest,
    ApprovalStep,
    RequestDraft,
    RequestStatus,
    ResolutionOutcome,
    ResolutionResult,
    StepDecision,
    SweepReport,
    TemplateDefinition,
    TemplateSnapshot,
)
from portal_kernel.exceptions import ConcurrencyConflictError, PortalKernelError
from portal_kernel.logging_config import LogContext, get_logger
from portal_kernel.selectors.approval_selector import ApprovalSelector
from portal_kernel.services.delegation_directory import SqlDelegationDirectory
from portal_kernel.services.escalation_scheduler import EscalationScheduler
from portal_kernel.services.escalation_sweeper import EscalationSweeper
from portal_kernel.services.notification_dispatcher import (
    AuditLogSink,
    NotificationDispatcher,
)
from portal_kernel.services.quiz_service import QuizService
from portal_kernel.services.template_service import TemplateService
from portal_kernel.services.workflow_orchestrator import WorkflowOrchestrator
from portal_kernel.utils.cooldown import CooldownStore

logger = get_logger("services.approval_workflow")

T = TypeVar("T")


@dataclass(frozen=True)
class StepActionResult:
    """What an approve/reject call reports back to its caller."""

    success: bool
    message: str
    outcome: ResolutionOutcome
    request_status: RequestStatus

    @classmethod
    def from_resolution(cls, result: ResolutionResult) -> StepActionResult:
        return cls(
            success=result.success,
            message=result.message,
            outcome=result.outcome,
            request_status=result.request_status,
        )


@dataclass(frozen=True)
class BulkApprovalItem:
    request_id: UUID
    step_id: UUID
    success: bool
    message: str
    outcome: ResolutionOutcome | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class BulkApprovalResult:
    items: tuple[BulkApprovalItem, ...] = ()

    @property
    def approved_count(self) -> int:
        return sum(1 for i in self.items if i.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for i in self.items if not i.success)

    @property
    def success(self) -> bool:
        return self.approved_count > 0


class ApprovalWorkflowService:
    """Unit-of-work facade over the approval kernel."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        org_directory: OrgDirectory,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        cooldown_store: CooldownStore | None = None,
    ):
        self._session_factory = session_factory
        self._org_directory = org_directory
        self._config = config or get_engine_config()
        self._clock = clock or SystemClock()

        self._owns_dispatcher = dispatcher is None
        self._dispatcher = dispatcher or NotificationDispatcher(
            sinks=[AuditLogSink()],
            async_dispatch=self._config.notifications.async_dispatch,
            max_workers=self._config.notifications.max_workers,
        )

        esc = self._config.escalation
        self._sweeper = EscalationSweeper(
            session_factory,
            clock=self._clock,
            default_escalation_user_id=esc.default_escalation_user_id,
            dispatcher=self._dispatcher,
            reminder_after=(
                timedelta(hours=esc.sla_reminder_after_hours)
                if esc.sla_reminder_after_hours is not None
                else None
            ),
            reminder_cooldown_seconds=esc.reminder_cooldown_seconds,
            cooldown_store=cooldown_store,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def create_template(self, definition: TemplateDefinition) -> TemplateSnapshot:
        return self._in_transaction(
            "create_template",
            lambda session: TemplateService(session, self._clock).create_template(definition),
            retry=False,
        )

    def submit(self, draft: RequestDraft) -> UUID:
        """Create a request from a template and route its first step.

        Raises:
            TemplateNotFoundError: Unknown or inactive template.
            TemplateResolutionError: A step has no eligible approver; nothing
                is persisted.
        """
        result = self._in_transaction(
            "submit",
            lambda session: self._orchestrator(session).submit(draft),
            retry=False,
        )
        self._dispatcher.dispatch(result.events)
        return result.request_id

    def approve_step(
        self,
        request_id: UUID,
        step_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StepActionResult:
        return self._resolve(
            request_id, step_id, StepDecision.APPROVE, actor_id, comment, cancel_event,
        )

    def reject_step(
        self,
        request_id: UUID,
        step_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StepActionResult:
        return self._resolve(
            request_id, step_id, StepDecision.REJECT, actor_id, comment, cancel_event,
        )

    def submit_quiz_answers(
        self,
        request_id: UUID,
        step_id: UUID,
        user_id: UUID,
        answers: Mapping[UUID, str],
    ) -> QuizSubmissionResult:
        quiz = self._config.quiz
        return self._in_transaction(
            "submit_quiz_answers",
            lambda session: QuizService(
                session,
                self._clock,
                default_passing_score=quiz.default_passing_score,
                allow_retake=quiz.allow_retake,
            ).submit_answers(request_id, step_id, user_id, answers),
            request_id=request_id,
        )

    def edit_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        form_data: Mapping[str, Any],
        change_reason: str | None = None,
        expected_version: int | None = None,
    ) -> EditResult:
        """Replace a request's form data as its submitter.

        With ``expected_version`` a stale edit raises ConcurrencyConflictError
        and is not retried.
        """
        result = self._in_transaction(
            "edit_request",
            lambda session: self._orchestrator(session).edit_request(
                request_id, actor_id, form_data, change_reason, expected_version,
            ),
            request_id=request_id,
            retry=expected_version is None,
        )
        self._dispatcher.dispatch(result.events)
        return result

    def add_comment(
        self,
        request_id: UUID,
        author_id: UUID,
        body: str,
        step_id: UUID | None = None,
    ) -> CommentResult:
        result = self._in_transaction(
            "add_comment",
            lambda session: self._orchestrator(session).add_comment(
                request_id, author_id, body, step_id,
            ),
            request_id=request_id,
        )
        self._dispatcher.dispatch(result.events)
        return result

    def run_escalation_sweep(self, now: datetime | None = None) -> SweepReport:
        return self._sweeper.run_sweep(now or self._clock.now())

    def bulk_approve(
        self,
        step_refs: Iterable[tuple[UUID, UUID]],
        actor_id: UUID,
        comment: str | None = None,
    ) -> BulkApprovalResult:
        """Approve several steps, each in its own transaction.

        A failure on one item never rolls back another.  Kernel errors are
        recorded per item; infrastructure errors propagate.
        """
        items: list[BulkApprovalItem] = []
        for request_id, step_id in step_refs:
            try:
                result = self.approve_step(request_id, step_id, actor_id, comment)
            except PortalKernelError as exc:
                items.append(
                    BulkApprovalItem(
                        request_id=request_id,
                        step_id=step_id,
                        success=False,
                        message=str(exc),
                        error_code=exc.code,
                    )
                )
                continue
            items.append(
                BulkApprovalItem(
                    request_id=request_id,
                    step_id=step_id,
                    success=result.success,
                    message=result.message,
                    outcome=result.outcome,
                )
            )

        bulk = BulkApprovalResult(items=tuple(items))
        logger.info(
            "bulk_approval_completed",
            extra={
                "actor_id": str(actor_id),
                "approved_count": bulk.approved_count,
                "failed_count": bulk.failed_count,
            },
        )
        return bulk

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest | None:
        return self._read(lambda s: ApprovalSelector(s).get_request(request_id))

    def pending_approvals(
        self, user_id: UUID, as_of: datetime | None = None,
    ) -> tuple[ApprovalStep, ...]:
        as_of = as_of or self._clock.now()
        return self._read(lambda s: ApprovalSelector(s).pending_for_approver(user_id, as_of))

    def approval_history(self, user_id: UUID) -> tuple[ApprovalStep, ...]:
        return self._read(lambda s: ApprovalSelector(s).approval_history(user_id))

    def request_comments(self, request_id: UUID) -> tuple[RequestComment, ...]:
        return self._read(lambda s: ApprovalSelector(s).comments_for_request(request_id))

    def edit_history(self, request_id: UUID) -> tuple[RequestEdit, ...]:
        return self._read(lambda s: ApprovalSelector(s).edit_history(request_id))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def scheduler(self) -> EscalationScheduler:
        """A scheduler that runs this service's sweep on the configured interval."""
        return EscalationScheduler(
            self._sweeper,
            clock=self._clock,
            interval_seconds=self._config.escalation.sweep_interval_seconds,
        )

    def shutdown(self) -> None:
        if self._owns_dispatcher:
            self._dispatcher.shutdown()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _orchestrator(self, session: Session) -> WorkflowOrchestrator:
        return WorkflowOrchestrator(
            session,
            self._org_directory,
            SqlDelegationDirectory(session),
            clock=self._clock,
            exclude_submitter_from_fan_out=self._config.workflow.exclude_submitter_from_fan_out,
        )

    def _resolve(
        self,
        request_id: UUID,
        step_id: UUID,
        decision: StepDecision,
        actor_id: UUID,
        comment: str | None,
        cancel_event: threading.Event | None,
    ) -> StepActionResult:
        result = self._in_transaction(
            f"{decision.value}_step",
            lambda session: self._orchestrator(session).resolve_step(
                request_id, step_id, decision, actor_id, comment, cancel_event,
            ),
            request_id=request_id,
        )
        self._dispatcher.dispatch(result.events)
        return StepActionResult.from_resolution(result)

    def _in_transaction(
        self,
        operation: str,
        work: Callable[[Session], T],
        request_id: UUID | None = None,
        retry: bool = True,
    ) -> T:
        """Run ``work`` in a fresh session and commit, retrying on conflicts."""
        max_retries = self._config.workflow.max_conflict_retries if retry else 0
        attempt = 0
        with LogContext.bind(request_id=request_id):
            while True:
                session = self._session_factory()
                try:
                    result = work(session)
                    session.commit()
                    return result
                except ConcurrencyConflictError:
                    session.rollback()
                    if attempt >= max_retries:
                        logger.warning(
                            "concurrency_retries_exhausted",
                            extra={"operation": operation, "attempts": attempt + 1},
                        )
                        raise
                    attempt += 1
                    logger.info(
                        "concurrency_conflict_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                except Exception:
                    session.rollback()
                    raise
                finally:
                    session.close()

    def _read(self, query: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return query(session)
        finally:
            session.rollback()
            session.close()
