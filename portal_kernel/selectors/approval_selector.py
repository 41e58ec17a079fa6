"""
ApprovalSelector -- read-side queries over requests and approval steps.

Responsibility:
    The inbox and history views: a request with its steps, the steps
    currently waiting on a user (directly, through escalation, or as an
    active delegate), what a user has decided, what a user submitted, and
    a request's comment thread and edit history.

Architecture position:
    Kernel > Selectors.  Read-only.  Delegation selection uses the pure
    ``portal_engines.delegation`` engine, so the inbox agrees with the
    orchestrator about who may act.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select

from portal_engines.delegation import select_active_delegation
from portal_kernel.domain.activity import RequestComment, RequestEdit
from portal_kernel.domain.workflow import (
    ACTIVE_STEP_STATUSES,
    ApprovalRequest,
    ApprovalStep,
    StepStatus,
)
from portal_kernel.models.delegation import ApprovalDelegationModel
from portal_kernel.models.request import (
    ApprovalStepModel,
    RequestCommentModel,
    RequestEditHistoryModel,
    RequestModel,
)
from portal_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[RequestModel]):
    """Read-only approval queries."""

    def get_request(self, request_id: UUID) -> ApprovalRequest | None:
        request = self.session.get(RequestModel, request_id)
        return request.to_dto() if request is not None else None

    def pending_for_approver(
        self, user_id: UUID, as_of: datetime,
    ) -> tuple[ApprovalStep, ...]:
        """Active steps the user may decide right now.

        Includes steps whose effective approver is the user and steps of
        approvers whose governing delegation at ``as_of`` points to them.
        """
        approvers = {user_id, *self._delegators_of(user_id, as_of)}
        effective = func.coalesce(
            ApprovalStepModel.escalated_to_id, ApprovalStepModel.approver_id,
        )
        rows = self.session.execute(
            select(ApprovalStepModel)
            .where(
                ApprovalStepModel.status.in_([s.value for s in ACTIVE_STEP_STATUSES]),
                effective.in_(approvers),
            )
            .order_by(ApprovalStepModel.started_at, ApprovalStepModel.position)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def approval_history(self, user_id: UUID) -> tuple[ApprovalStep, ...]:
        """Steps the user approved or rejected, most recent first."""
        rows = self.session.execute(
            select(ApprovalStepModel)
            .where(
                ApprovalStepModel.decided_by_id == user_id,
                ApprovalStepModel.status.in_(
                    [StepStatus.APPROVED.value, StepStatus.REJECTED.value]
                ),
            )
            .order_by(ApprovalStepModel.finished_at.desc())
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def requests_for_submitter(self, user_id: UUID) -> tuple[ApprovalRequest, ...]:
        rows = self.session.execute(
            select(RequestModel)
            .where(RequestModel.submitter_id == user_id)
            .order_by(RequestModel.submitted_at.desc())
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def comments_for_request(self, request_id: UUID) -> tuple[RequestComment, ...]:
        """The request's comment thread, oldest first."""
        rows = self.session.execute(
            select(RequestCommentModel)
            .where(RequestCommentModel.request_id == request_id)
            .order_by(RequestCommentModel.created_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def edit_history(self, request_id: UUID) -> tuple[RequestEdit, ...]:
        rows = self.session.execute(
            select(RequestEditHistoryModel)
            .where(RequestEditHistoryModel.request_id == request_id)
            .order_by(RequestEditHistoryModel.edited_at)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def _delegators_of(self, user_id: UUID, as_of: datetime) -> set[UUID]:
        """Approvers whose governing delegation at ``as_of`` names the user."""
        delegators = self.session.execute(
            select(ApprovalDelegationModel.from_user_id)
            .where(ApprovalDelegationModel.to_user_id == user_id)
            .distinct()
        ).scalars().all()
        if not delegators:
            return set()

        rows = self.session.execute(
            select(ApprovalDelegationModel).where(
                ApprovalDelegationModel.from_user_id.in_(delegators),
                ApprovalDelegationModel.is_active == True,  # noqa: E712
                ApprovalDelegationModel.start_date <= as_of,
                or_(
                    ApprovalDelegationModel.end_date.is_(None),
                    ApprovalDelegationModel.end_date >= as_of,
                ),
            )
        ).scalars().all()
        delegations = [r.to_dto() for r in rows]

        result: set[UUID] = set()
        for approver_id in delegators:
            chosen = select_active_delegation(delegations, approver_id, as_of)
            if chosen is not None and chosen.to_user_id == user_id:
                result.add(approver_id)
        return result
