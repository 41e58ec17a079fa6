"""
portal_engines.delegation -- Pure delegation selection.

Responsibility:
    Pick the delegation that governs an approver at a point in time.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Among active delegations from the approver whose window covers
      ``as_of`` (open-ended when ``end_date`` is None), the most recently
      created wins; ties break on delegation id for determinism.
    - Delegations are never chained: the delegate's own delegations are
      not consulted, so lookup is a single step and cannot cycle.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from portal_kernel.domain.delegation import Delegation


def select_active_delegation(
    delegations: Iterable[Delegation],
    approver_id: UUID,
    as_of: datetime,
) -> Delegation | None:
    candidates = [
        d for d in delegations
        if d.from_user_id == approver_id and d.covers(as_of)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda d: (d.created_at, str(d.delegation_id)))


def resolve_acting_user(
    delegations: Iterable[Delegation],
    approver_id: UUID,
    as_of: datetime,
) -> UUID:
    """The delegate acting for ``approver_id`` at ``as_of``, else the approver."""
    chosen = select_active_delegation(delegations, approver_id, as_of)
    return chosen.to_user_id if chosen is not None else approver_id
