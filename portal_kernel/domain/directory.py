"""
Directory protocols (``portal_kernel.domain.directory``).

Responsibility:
    The ID-based lookup interfaces the engine consumes for organisation
    structure and delegation, plus an in-memory organisation directory used
    by tests and local runs.

Architecture position:
    Kernel > Domain -- protocols and a pure in-memory implementation.

Invariants enforced:
    - Users, departments, role groups and delegations are related by ID
      through these lookups only; the engine never holds an object graph
      of the organisation.
    - Every lookup returns users in a stable order so "first candidate"
      resolution is deterministic.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Protocol
from uuid import UUID


class OrgDirectory(Protocol):
    """Organisation structure lookups used at submission time."""

    def users_with_role(self, role: str) -> tuple[UUID, ...]:
        ...

    def users_in_group(self, group_id: UUID) -> tuple[UUID, ...]:
        ...

    def department_users_with_role(
        self, department_id: UUID, role: str,
    ) -> tuple[UUID, ...]:
        ...

    def supervisor_of(self, user_id: UUID) -> UUID | None:
        ...


class DelegationDirectory(Protocol):
    """Answers "who currently acts for approver X"."""

    def resolve_acting_user(self, approver_id: UUID, as_of: datetime) -> UUID:
        ...

    def is_acting_for(
        self, actor_id: UUID, approver_id: UUID, as_of: datetime,
    ) -> bool:
        ...


class InMemoryOrgDirectory:
    """Dictionary-backed OrgDirectory.

    Users are returned in registration order.
    """

    def __init__(self) -> None:
        self._roles: dict[str, list[UUID]] = defaultdict(list)
        self._groups: dict[UUID, list[UUID]] = defaultdict(list)
        self._departments: dict[tuple[UUID, str], list[UUID]] = defaultdict(list)
        self._supervisors: dict[UUID, UUID] = {}

    def add_role(self, user_id: UUID, role: str) -> InMemoryOrgDirectory:
        if user_id not in self._roles[role]:
            self._roles[role].append(user_id)
        return self

    def add_to_group(self, user_id: UUID, group_id: UUID) -> InMemoryOrgDirectory:
        if user_id not in self._groups[group_id]:
            self._groups[group_id].append(user_id)
        return self

    def add_department_role(
        self, user_id: UUID, department_id: UUID, role: str,
    ) -> InMemoryOrgDirectory:
        members = self._departments[(department_id, role)]
        if user_id not in members:
            members.append(user_id)
        return self

    def set_supervisor(self, user_id: UUID, supervisor_id: UUID) -> InMemoryOrgDirectory:
        self._supervisors[user_id] = supervisor_id
        return self

    def users_with_role(self, role: str) -> tuple[UUID, ...]:
        return tuple(self._roles.get(role, ()))

    def users_in_group(self, group_id: UUID) -> tuple[UUID, ...]:
        return tuple(self._groups.get(group_id, ()))

    def department_users_with_role(
        self, department_id: UUID, role: str,
    ) -> tuple[UUID, ...]:
        return tuple(self._departments.get((department_id, role), ()))

    def supervisor_of(self, user_id: UUID) -> UUID | None:
        return self._supervisors.get(user_id)
