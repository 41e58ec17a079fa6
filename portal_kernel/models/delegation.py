"""
Module: portal_kernel.models.delegation
Responsibility: ORM persistence for approval delegations.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - from_user_id != to_user_id (DB check constraint).
    - end_date, when set, is not before start_date.

Audit relevance:
    The workflow engine only reads delegations.  Delegations are
    deactivated, never deleted, so a past decision by a delegate can
    always be traced to the delegation that authorised it.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from portal_kernel.db.base import Base

if TYPE_CHECKING:
    from portal_kernel.domain.delegation import Delegation


class ApprovalDelegationModel(Base):
    __tablename__ = "approval_delegations"

    __table_args__ = (
        CheckConstraint(
            "from_user_id <> to_user_id", name="ck_approval_delegations_distinct",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_approval_delegations_window",
        ),
        Index(
            "ix_approval_delegations_from_active",
            "from_user_id", "is_active", "start_date",
        ),
    )

    from_user_id: Mapped[UUID] = mapped_column(nullable=False)
    to_user_id: Mapped[UUID] = mapped_column(nullable=False)
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalDelegation {self.from_user_id} -> {self.to_user_id} "
            f"active={self.is_active}>"
        )

    def to_dto(self) -> Delegation:
        from portal_kernel.domain.delegation import Delegation

        return Delegation(
            delegation_id=self.id,
            from_user_id=self.from_user_id,
            to_user_id=self.to_user_id,
            start_date=self.start_date,
            created_at=self.created_at,
            end_date=self.end_date,
            is_active=self.is_active,
            reason=self.reason,
        )
