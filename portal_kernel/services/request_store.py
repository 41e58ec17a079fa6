"""
RequestStore -- load and save a request together with its step list.

Responsibility:
    The repository boundary of the workflow engine.  Loads a request with
    every step it owns and writes it back under optimistic concurrency, so
    a request and its steps are one consistency boundary.

Architecture position:
    Kernel > Services.  Used by the orchestrator, the quiz service and the
    escalation sweeper.

Invariants enforced:
    - Compare-and-set on ``RequestModel.version``: a save succeeds only if
      the version is still the one the caller loaded, and bumps it by one.
      Any other writer to the same request in the meantime makes the save
      fail instead of applying a decision to a stale step list.
    - The version row is claimed before pending step changes are flushed,
      so concurrent writers serialize on the request row.

Failure modes:
    - RequestNotFoundError if the request id does not exist.
    - ConcurrencyConflictError on a version mismatch.  The caller's
      transaction must be rolled back; nothing is merged.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from portal_kernel.exceptions import ConcurrencyConflictError, RequestNotFoundError
from portal_kernel.logging_config import get_logger
from portal_kernel.models.request import RequestModel
from portal_kernel.services.base import BaseService

logger = get_logger("services.request_store")


class RequestStore(BaseService[RequestModel]):
    """Request + steps repository with a version token."""

    def get_request_with_steps(self, request_id: UUID) -> RequestModel:
        """Load a request and its steps, refreshing any stale identity-map copy.

        Raises:
            RequestNotFoundError: If no request has this id.
        """
        request = self.session.get(RequestModel, request_id, populate_existing=True)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def add_request(self, request: RequestModel) -> RequestModel:
        """Persist a new request and its steps; ids are assigned on flush."""
        self.session.add(request)
        self.session.flush()
        return request

    def save_request(self, request: RequestModel, expected_version: int) -> int:
        """Write back a loaded request if nobody else has since.

        Args:
            request: The request as mutated by the caller.
            expected_version: The version the caller loaded.

        Returns:
            The new version.

        Raises:
            ConcurrencyConflictError: If the stored version moved.
        """
        new_version = expected_version + 1
        with self.session.no_autoflush:
            result = self.session.execute(
                update(RequestModel)
                .where(
                    RequestModel.id == request.id,
                    RequestModel.version == expected_version,
                )
                .values(version=new_version),
                execution_options={"synchronize_session": False},
            )

        if result.rowcount != 1:
            logger.warning(
                "request_version_conflict",
                extra={
                    "request_id": str(request.id),
                    "expected_version": expected_version,
                },
            )
            raise ConcurrencyConflictError(str(request.id), expected_version)

        set_committed_value(request, "version", new_version)
        self.session.flush()
        return new_version
