"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Provides the common constructor and session-handling contract for
    every writing service in the kernel layer.  Services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The
      ``portal_services`` facade and the escalation sweeper own
      commit/rollback, one request per transaction.

Failure modes:
    - A subclass calling ``session.commit()`` would split one request's
      consistency boundary across transactions.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from portal_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods -- those belong in
          ``portal_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
