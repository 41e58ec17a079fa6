"""
EscalationSweeper -- periodic escalation of stalled approval steps.

Responsibility:
    Finds active steps whose escalation timeout has elapsed and reassigns
    them to their escalation target, stamping ``escalated_at``.  Also
    sends throttled SLA reminders for steps that have been waiting longer
    than the configured threshold.

Architecture position:
    Kernel > Services.  Owns its own transactions: one short read to
    scan, then one transaction per request to escalate.  Predicates come
    from ``portal_engines.escalation``.

Invariants enforced:
    - Never changes a step's primary status; escalation only sets the
      marker and the new effective approver.
    - Holds at most one request's consistency boundary at a time.
    - Re-checks the predicate on freshly loaded state inside the write
      transaction, so a step approved since the scan is left alone.
    - Saves through the request version token: a concurrent decision
      wins, the sweep counts a conflict and moves on.
    - A step is escalated at most once.

Failure modes:
    - Infrastructure errors propagate after the current request's
      transaction is rolled back.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from portal_engines.escalation import (
    escalation_target,
    is_escalation_due,
    is_reminder_due,
)
from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.events import WorkflowEvent, WorkflowEventType
from portal_kernel.domain.workflow import (
    ACTIVE_STEP_STATUSES,
    RequestStatus,
    SweepReport,
)
from portal_kernel.exceptions import ConcurrencyConflictError
from portal_kernel.logging_config import LogContext, get_logger
from portal_kernel.models.request import ApprovalStepModel, RequestModel
from portal_kernel.services.notification_dispatcher import NotificationDispatcher
from portal_kernel.services.request_store import RequestStore
from portal_kernel.utils.cooldown import CooldownStore, InMemoryCooldownStore

logger = get_logger("services.escalation")

_OPEN_REQUEST_STATUSES = (
    RequestStatus.IN_REVIEW.value,
    RequestStatus.AWAITING_SURVEY.value,
)


class EscalationSweeper:
    """Scans for overdue steps and escalates them one request at a time."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        default_escalation_user_id: UUID | None = None,
        dispatcher: NotificationDispatcher | None = None,
        reminder_after: timedelta | None = None,
        reminder_cooldown_seconds: float = 86400,
        cooldown_store: CooldownStore | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._default_target = default_escalation_user_id
        self._dispatcher = dispatcher
        self._reminder_after = reminder_after
        self._reminder_cooldown = reminder_cooldown_seconds
        self._cooldowns = cooldown_store or InMemoryCooldownStore()

    def run_sweep(self, now: datetime | None = None) -> SweepReport:
        """One full pass.  Safe to run repeatedly and alongside approvals."""
        now = now or self._clock.now()
        due_by_request, reminders, scanned = self._scan(now)

        escalated: list[UUID] = []
        skipped_no_target = 0
        skipped_stale = 0
        conflicts = 0

        for request_id, step_ids in due_by_request.items():
            try:
                outcome = self._escalate_request(request_id, step_ids, now)
            except ConcurrencyConflictError:
                conflicts += 1
                logger.info(
                    "escalation_conflict_skipped",
                    extra={"escalated_request_id": str(request_id)},
                )
                continue
            escalated.extend(outcome[0])
            skipped_no_target += outcome[1]
            skipped_stale += outcome[2]

        if reminders and self._dispatcher is not None:
            self._dispatcher.dispatch(reminders)

        report = SweepReport(
            scanned=scanned,
            escalated=len(escalated),
            skipped_no_target=skipped_no_target,
            skipped_stale=skipped_stale,
            conflicts=conflicts,
            reminders_sent=len(reminders),
            escalated_step_ids=tuple(escalated),
        )
        logger.info(
            "escalation_sweep_completed",
            extra={
                "scanned": report.scanned,
                "escalated": report.escalated,
                "skipped_no_target": report.skipped_no_target,
                "skipped_stale": report.skipped_stale,
                "conflicts": report.conflicts,
                "reminders_sent": report.reminders_sent,
            },
        )
        return report

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _scan(
        self, now: datetime,
    ) -> tuple[dict[UUID, list[UUID]], list[WorkflowEvent], int]:
        """Read-only pass: due steps per request, plus reminder events."""
        session = self._session_factory()
        try:
            steps = session.execute(
                select(ApprovalStepModel)
                .join(RequestModel, RequestModel.id == ApprovalStepModel.request_id)
                .where(
                    ApprovalStepModel.status.in_([s.value for s in ACTIVE_STEP_STATUSES]),
                    RequestModel.status.in_(_OPEN_REQUEST_STATUSES),
                )
            ).scalars().all()

            due: dict[UUID, list[UUID]] = defaultdict(list)
            reminders: list[WorkflowEvent] = []
            for step in steps:
                if is_escalation_due(step, now):
                    due[step.request_id].append(step.id)
                if self._reminder_after is not None and is_reminder_due(
                    step, now, self._reminder_after,
                ):
                    if self._cooldowns.try_acquire(
                        f"step-overdue:{step.id}", now, self._reminder_cooldown,
                    ):
                        reminders.append(
                            WorkflowEvent(
                                event_type=WorkflowEventType.STEP_OVERDUE,
                                request_id=step.request_id,
                                occurred_at=now,
                                step_id=step.id,
                                recipient_id=step.effective_approver_id,
                                payload={
                                    "step_order": step.step_order,
                                    "started_at": step.started_at.isoformat(),
                                },
                            )
                        )
            return dict(due), reminders, len(steps)
        finally:
            session.rollback()
            session.close()

    def _escalate_request(
        self, request_id: UUID, step_ids: list[UUID], now: datetime,
    ) -> tuple[list[UUID], int, int]:
        """Escalate the due steps of one request inside its own transaction."""
        session = self._session_factory()
        escalated: list[UUID] = []
        events: list[WorkflowEvent] = []
        skipped_no_target = 0
        skipped_stale = 0
        try:
            with LogContext.bind(request_id=request_id):
                store = RequestStore(session)
                request = store.get_request_with_steps(request_id)
                expected_version = request.version
                wanted = set(step_ids)

                for step in request.steps:
                    if step.id not in wanted:
                        continue
                    if request.status not in _OPEN_REQUEST_STATUSES or not is_escalation_due(step, now):
                        skipped_stale += 1
                        continue
                    target = escalation_target(step, self._default_target)
                    if target is None:
                        skipped_no_target += 1
                        logger.warning(
                            "escalation_target_missing",
                            extra={"escalated_step_id": str(step.id)},
                        )
                        continue
                    step.escalated_at = now
                    step.escalated_to_id = target
                    escalated.append(step.id)
                    events.append(
                        WorkflowEvent(
                            event_type=WorkflowEventType.STEP_ESCALATED,
                            request_id=request.id,
                            occurred_at=now,
                            step_id=step.id,
                            recipient_id=target,
                            payload={
                                "step_order": step.step_order,
                                "previous_approver_id": str(step.approver_id),
                            },
                        )
                    )

                if escalated:
                    store.save_request(request, expected_version)
                session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        for step_id in escalated:
            logger.info(
                "step_escalated",
                extra={
                    "escalated_request_id": str(request_id),
                    "escalated_step_id": str(step_id),
                },
            )
        if events and self._dispatcher is not None:
            self._dispatcher.dispatch(events)
        return escalated, skipped_no_target, skipped_stale
