"""
Request edit and comment domain types (``portal_kernel.domain.activity``).

Responsibility:
    Value objects for the submitter editing a request's form data and for
    the comment thread attached to a request.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Only the submitter edits, and only while the request is ``draft`` or
      ``in_review``; every accepted edit keeps the old and new form data.
    - Only the submitter and the request's approvers comment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from portal_kernel.domain.workflow import RequestStatus

EDITABLE_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.DRAFT,
    RequestStatus.IN_REVIEW,
})


@dataclass(frozen=True)
class RequestEdit:
    """One accepted change to a request's form data."""

    edit_id: UUID
    request_id: UUID
    edited_by_id: UUID
    edited_at: datetime
    old_form_data: dict[str, Any] = field(default_factory=dict)
    new_form_data: dict[str, Any] = field(default_factory=dict)
    change_reason: str | None = None


@dataclass(frozen=True)
class RequestComment:
    """One entry in a request's comment thread.

    ``step_id`` is set when the comment was written as part of a step
    decision (a rejection reason).
    """

    comment_id: UUID
    request_id: UUID
    author_id: UUID
    body: str
    created_at: datetime
    step_id: UUID | None = None


class EditOutcome(str, Enum):
    EDITED = "edited"
    NOT_SUBMITTER = "not_submitter"
    REQUEST_LOCKED = "request_locked"


EDIT_OUTCOME_MESSAGES: dict[EditOutcome, str] = {
    EditOutcome.EDITED: "request updated",
    EditOutcome.NOT_SUBMITTER: "only the submitter can edit a request",
    EditOutcome.REQUEST_LOCKED: "only draft or in-review requests can be edited",
}


class CommentOutcome(str, Enum):
    ADDED = "added"
    NOT_PARTICIPANT = "not_participant"
    EMPTY_COMMENT = "empty_comment"


COMMENT_OUTCOME_MESSAGES: dict[CommentOutcome, str] = {
    CommentOutcome.ADDED: "comment added",
    CommentOutcome.NOT_PARTICIPANT: "only the submitter and approvers can comment",
    CommentOutcome.EMPTY_COMMENT: "comment is empty",
}


@dataclass(frozen=True)
class EditResult:
    """Outcome of one edit.  ``events`` is dispatched after commit."""

    outcome: EditOutcome
    request_id: UUID
    request_status: RequestStatus
    edit: RequestEdit | None = None
    events: tuple = ()

    @property
    def success(self) -> bool:
        return self.outcome == EditOutcome.EDITED

    @property
    def message(self) -> str:
        return EDIT_OUTCOME_MESSAGES[self.outcome]


@dataclass(frozen=True)
class CommentResult:
    outcome: CommentOutcome
    request_id: UUID
    comment: RequestComment | None = None
    events: tuple = ()

    @property
    def success(self) -> bool:
        return self.outcome == CommentOutcome.ADDED

    @property
    def message(self) -> str:
        return COMMENT_OUTCOME_MESSAGES[self.outcome]
