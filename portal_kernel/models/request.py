"""
Module: portal_kernel.models.request
Responsibility: ORM persistence for requests, their materialized approval
    steps, the submitter's quiz answers, form-data edit history and the
    comment thread.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A request and its steps form one consistency boundary guarded by
      ``RequestModel.version``; the store bumps it with a compare-and-set
      on every save (see services/request_store.py).
    - Status values limited to the lifecycle enums (DB check constraints).
    - ``step_template_id`` is nullable with ON DELETE SET NULL so template
      changes never invalidate history.
    - A quiz step carries its own copy of the question bank
      (``quiz_snapshot``); editing or deleting the template afterwards
      does not change how the step is scored.

Failure modes:
    - IntegrityError on an out-of-range status value.

Audit relevance:
    Steps record who decided (``decided_by_id``, which differs from
    ``approver_id`` when a delegate or escalation target acted), when, and
    with which comment.  Superseded steps stay distinct from approved and
    rejected ones.  Form-data edits and comments are append-only rows.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal_kernel.db.base import Base, JSONDocument, UUIDString

if TYPE_CHECKING:
    from portal_kernel.domain.activity import RequestComment, RequestEdit
    from portal_kernel.domain.quiz import QuizAnswerRecord
    from portal_kernel.domain.workflow import ApprovalRequest, ApprovalStep, QuizQuestion


class RequestModel(Base):
    """Persistent request.

    Contract:
        ``status`` is only ever written as derive_request_status(steps).
        ``completed_at`` is written once, on reaching a terminal status.
    """

    __tablename__ = "requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'in_review', 'awaiting_survey', 'approved', 'rejected')",
            name="ck_requests_valid_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')",
            name="ck_requests_valid_priority",
        ),
        Index("ix_requests_submitter", "submitter_id", "submitted_at"),
        Index("ix_requests_status", "status"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("request_templates.id"), nullable=False,
    )
    submitter_id: Mapped[UUID] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    form_data: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict,
    )
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="request",
        order_by=lambda: [ApprovalStepModel.step_order, ApprovalStepModel.position],
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Request {self.id} status={self.status} v{self.version}>"

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from portal_kernel.domain.workflow import (
            ApprovalRequest,
            RequestPriority,
            RequestStatus,
        )

        return ApprovalRequest(
            request_id=self.id,
            template_id=self.template_id,
            submitter_id=self.submitter_id,
            submitted_at=self.submitted_at,
            status=RequestStatus(self.status),
            version=self.version,
            priority=RequestPriority(self.priority),
            form_data=dict(self.form_data or {}),
            completed_at=self.completed_at,
            steps=tuple(s.to_dto() for s in self.steps),
        )


class ApprovalStepModel(Base):
    """Persistent materialized approval step."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_review', 'requires_survey', "
            "'approved', 'rejected', 'superseded')",
            name="ck_approval_steps_valid_status",
        ),
        CheckConstraint("minimum_approvals >= 1", name="ck_approval_steps_minimum"),
        UniqueConstraint("request_id", "position", name="uq_approval_steps_position"),
        Index("ix_approval_steps_request", "request_id", "step_order"),
        Index("ix_approval_steps_approver_status", "approver_id", "status"),
        Index("ix_approval_steps_escalation_scan", "status", "escalated_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Materialization order within the request; stable tie-break inside a group.
    position: Mapped[int] = mapped_column(nullable=False)
    step_order: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    minimum_approvals: Mapped[int] = mapped_column(nullable=False, default=1)
    parallel_group_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    requires_quiz: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    passing_score: Mapped[int | None] = mapped_column(nullable=True)
    quiz_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    quiz_score: Mapped[int | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_to_id: Mapped[UUID | None] = mapped_column(nullable=True)
    escalation_timeout_seconds: Mapped[int | None] = mapped_column(nullable=True)
    escalation_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    step_template_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("step_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Quiz bank copied at submission; scoring never reads the live template.
    quiz_snapshot: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONDocument, nullable=True,
    )

    request: Mapped["RequestModel"] = relationship(
        "RequestModel", back_populates="steps",
    )
    answers: Mapped[list["QuizAnswerModel"]] = relationship(
        "QuizAnswerModel",
        back_populates="step",
        order_by="QuizAnswerModel.answered_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def effective_approver_id(self) -> UUID:
        return self.escalated_to_id or self.approver_id

    @staticmethod
    def snapshot_questions(questions: Iterable[QuizQuestion]) -> list[dict[str, Any]]:
        """Flatten a quiz bank into the JSON stored in ``quiz_snapshot``."""
        return [
            {
                "question_id": str(q.question_id),
                "prompt": q.prompt,
                "correct_answer": q.correct_answer,
                "options": list(q.options),
                "sort_order": q.sort_order,
            }
            for q in questions
        ]

    def snapshot_quiz(self) -> tuple[QuizQuestion, ...]:
        """Rebuild the quiz bank captured at submission, in sort order."""
        from portal_kernel.domain.workflow import QuizQuestion

        questions = (
            QuizQuestion(
                question_id=UUID(str(entry["question_id"])),
                prompt=entry["prompt"],
                correct_answer=entry["correct_answer"],
                options=tuple(entry.get("options") or ()),
                sort_order=entry.get("sort_order", 0),
            )
            for entry in self.quiz_snapshot or ()
        )
        return tuple(sorted(questions, key=lambda q: q.sort_order))

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.id} order={self.step_order} "
            f"approver={self.approver_id} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        from portal_kernel.domain.workflow import ApprovalStep, StepStatus

        return ApprovalStep(
            step_id=self.id,
            request_id=self.request_id,
            step_order=self.step_order,
            approver_id=self.approver_id,
            status=StepStatus(self.status),
            minimum_approvals=self.minimum_approvals,
            parallel_group_id=self.parallel_group_id,
            requires_quiz=self.requires_quiz,
            passing_score=self.passing_score,
            quiz_passed=self.quiz_passed,
            quiz_score=self.quiz_score,
            comment=self.comment,
            decided_by_id=self.decided_by_id,
            created_at=self.created_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
            escalated_at=self.escalated_at,
            escalated_to_id=self.escalated_to_id,
            escalation_timeout_seconds=self.escalation_timeout_seconds,
            escalation_user_id=self.escalation_user_id,
            step_template_id=self.step_template_id,
        )


class QuizAnswerModel(Base):
    """One submitter answer to one quiz question on one step."""

    __tablename__ = "quiz_answers"

    __table_args__ = (
        Index("ix_quiz_answers_step", "step_id"),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id: Mapped[UUID] = mapped_column(nullable=False)
    selected_answer: Mapped[str] = mapped_column(String(500), nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    answered_at: Mapped[datetime] = mapped_column(nullable=False)

    step: Mapped["ApprovalStepModel"] = relationship(
        "ApprovalStepModel", back_populates="answers",
    )

    def to_dto(self) -> QuizAnswerRecord:
        from portal_kernel.domain.quiz import QuizAnswerRecord

        return QuizAnswerRecord(
            question_id=self.question_id,
            selected_answer=self.selected_answer,
            is_correct=self.is_correct,
            answered_at=self.answered_at,
        )


class RequestEditHistoryModel(Base):
    """Append-only record of one edit to a request's form data."""

    __tablename__ = "request_edit_history"

    __table_args__ = (
        Index("ix_request_edit_history_request", "request_id", "edited_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    edited_by_id: Mapped[UUID] = mapped_column(nullable=False)
    edited_at: Mapped[datetime] = mapped_column(nullable=False)
    old_form_data: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict,
    )
    new_form_data: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict,
    )
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> RequestEdit:
        from portal_kernel.domain.activity import RequestEdit

        return RequestEdit(
            edit_id=self.id,
            request_id=self.request_id,
            edited_by_id=self.edited_by_id,
            edited_at=self.edited_at,
            old_form_data=dict(self.old_form_data or {}),
            new_form_data=dict(self.new_form_data or {}),
            change_reason=self.change_reason,
        )


class RequestCommentModel(Base):
    """One comment in a request's thread."""

    __tablename__ = "request_comments"

    __table_args__ = (
        Index("ix_request_comments_request", "request_id", "created_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Set when the comment came with a step decision.
    step_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("approval_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    author_id: Mapped[UUID] = mapped_column(nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> RequestComment:
        from portal_kernel.domain.activity import RequestComment

        return RequestComment(
            comment_id=self.id,
            request_id=self.request_id,
            author_id=self.author_id,
            body=self.body,
            created_at=self.created_at,
            step_id=self.step_id,
        )
