"""
Delegation directory and administration.

Responsibility:
    ``SqlDelegationDirectory`` answers "who currently acts for approver X"
    from the delegation table; the orchestrator consults it at decision
    time.  ``DelegationService`` creates and revokes delegations for
    administrative callers; the workflow engine itself never mutates them.

Architecture position:
    Kernel > Services.  Selection is delegated to the pure
    ``portal_engines.delegation`` engine.

Invariants enforced:
    - Single bounded read per lookup; no chaining, so no cycles.
    - Delegations are deactivated, never deleted.

Failure modes:
    - InvalidDelegationError on self-delegation or an inverted window.
    - DelegationNotFoundError when revoking an unknown delegation.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from portal_engines.delegation import select_active_delegation
from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.delegation import Delegation
from portal_kernel.exceptions import DelegationNotFoundError, InvalidDelegationError
from portal_kernel.logging_config import get_logger
from portal_kernel.models.delegation import ApprovalDelegationModel
from portal_kernel.services.base import BaseService

logger = get_logger("services.delegation")


class SqlDelegationDirectory:
    """DelegationDirectory backed by the approval_delegations table."""

    def __init__(self, session: Session):
        self.session = session

    def active_delegation(self, approver_id: UUID, as_of: datetime) -> Delegation | None:
        rows = self.session.execute(
            select(ApprovalDelegationModel).where(
                ApprovalDelegationModel.from_user_id == approver_id,
                ApprovalDelegationModel.is_active == True,  # noqa: E712
                ApprovalDelegationModel.start_date <= as_of,
                or_(
                    ApprovalDelegationModel.end_date.is_(None),
                    ApprovalDelegationModel.end_date >= as_of,
                ),
            )
        ).scalars().all()
        return select_active_delegation(
            (r.to_dto() for r in rows), approver_id, as_of,
        )

    def resolve_acting_user(self, approver_id: UUID, as_of: datetime) -> UUID:
        chosen = self.active_delegation(approver_id, as_of)
        return chosen.to_user_id if chosen is not None else approver_id

    def is_acting_for(self, actor_id: UUID, approver_id: UUID, as_of: datetime) -> bool:
        """True when ``actor_id`` is the approver's active delegate at ``as_of``."""
        if actor_id == approver_id:
            return False
        return self.resolve_acting_user(approver_id, as_of) == actor_id


class DelegationService(BaseService[ApprovalDelegationModel]):
    """Administrative delegation management."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_delegation(
        self,
        from_user_id: UUID,
        to_user_id: UUID,
        start_date: datetime,
        end_date: datetime | None = None,
        reason: str | None = None,
    ) -> Delegation:
        if from_user_id == to_user_id:
            raise InvalidDelegationError(
                str(from_user_id), str(to_user_id), "cannot delegate to oneself",
            )
        if end_date is not None and end_date < start_date:
            raise InvalidDelegationError(
                str(from_user_id), str(to_user_id), "end_date is before start_date",
            )

        model = ApprovalDelegationModel(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            start_date=start_date,
            end_date=end_date,
            is_active=True,
            reason=reason,
            created_at=self._clock.now(),
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "delegation_created",
            extra={
                "delegation_id": str(model.id),
                "from_user_id": str(from_user_id),
                "to_user_id": str(to_user_id),
                "start_date": start_date,
                "end_date": end_date,
            },
        )
        return model.to_dto()

    def revoke_delegation(self, delegation_id: UUID) -> Delegation:
        model = self.session.get(ApprovalDelegationModel, delegation_id)
        if model is None:
            raise DelegationNotFoundError(str(delegation_id))
        model.is_active = False
        self.session.flush()
        logger.info("delegation_revoked", extra={"delegation_id": str(delegation_id)})
        return model.to_dto()
