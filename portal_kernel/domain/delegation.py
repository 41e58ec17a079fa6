"""
Delegation domain type (``portal_kernel.domain.delegation``).

Responsibility:
    Immutable snapshot of one approval delegation: a time-bounded
    substitution of one user's approval authority by another.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class Delegation:
    delegation_id: UUID
    from_user_id: UUID
    to_user_id: UUID
    start_date: datetime
    created_at: datetime
    end_date: datetime | None = None
    is_active: bool = True
    reason: str | None = None

    def covers(self, as_of: datetime) -> bool:
        """True when the delegation is active and ``as_of`` lies in its window."""
        if not self.is_active:
            return False
        if as_of < self.start_date:
            return False
        return self.end_date is None or as_of <= self.end_date
