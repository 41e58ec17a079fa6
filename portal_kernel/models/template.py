"""
Module: portal_kernel.models.template
Responsibility: ORM persistence for request templates, their approval step
    definitions, and each step's quiz question bank.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - step_order >= 1 and minimum_approvals >= 1 (DB check constraints).
    - passing_score within 0..100 when set.
    - Approver strategy kind limited to the known kinds.

Audit relevance:
    Templates are consulted once per submission.  Requests carry their own
    materialized copy of every field that drives the workflow, so editing
    or deactivating a template never alters an in-flight request.
"""

from __future__ import annotations

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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal_kernel.db.base import Base, JSONDocument, UUIDString

if TYPE_CHECKING:
    from portal_kernel.domain.workflow import (
        QuizQuestion,
        StepTemplate,
        TemplateSnapshot,
    )


class RequestTemplateModel(Base):
    """Persistent request template."""

    __tablename__ = "request_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    steps: Mapped[list["StepTemplateModel"]] = relationship(
        "StepTemplateModel",
        back_populates="template",
        order_by="StepTemplateModel.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<RequestTemplate {self.name} active={self.is_active}>"

    def to_dto(self) -> TemplateSnapshot:
        """Convert ORM model to frozen domain snapshot."""
        from portal_kernel.domain.workflow import TemplateSnapshot

        return TemplateSnapshot(
            template_id=self.id,
            name=self.name,
            steps=tuple(s.to_dto() for s in self.steps),
            is_active=self.is_active,
        )


class StepTemplateModel(Base):
    """Persistent approval step definition.

    The approver strategy is flattened into ``strategy_*`` columns; only
    the columns its kind needs are populated.
    """

    __tablename__ = "step_templates"

    __table_args__ = (
        CheckConstraint("step_order >= 1", name="ck_step_templates_order"),
        CheckConstraint(
            "minimum_approvals >= 1", name="ck_step_templates_minimum_approvals",
        ),
        CheckConstraint(
            "passing_score IS NULL OR (passing_score >= 0 AND passing_score <= 100)",
            name="ck_step_templates_passing_score",
        ),
        CheckConstraint(
            "strategy_kind IN ('fixed_user', 'role', 'role_group', "
            "'department_role', 'direct_supervisor')",
            name="ck_step_templates_strategy_kind",
        ),
        Index("ix_step_templates_template_order", "template_id", "step_order"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("request_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    strategy_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    strategy_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    strategy_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    strategy_group_id: Mapped[UUID | None] = mapped_column(nullable=True)
    strategy_department_id: Mapped[UUID | None] = mapped_column(nullable=True)
    parallel_group_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    minimum_approvals: Mapped[int] = mapped_column(nullable=False, default=1)
    requires_quiz: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    passing_score: Mapped[int | None] = mapped_column(nullable=True)
    escalation_timeout_seconds: Mapped[int | None] = mapped_column(nullable=True)
    escalation_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    template: Mapped["RequestTemplateModel"] = relationship(
        "RequestTemplateModel", back_populates="steps",
    )
    questions: Mapped[list["QuizQuestionModel"]] = relationship(
        "QuizQuestionModel",
        back_populates="step_template",
        order_by="QuizQuestionModel.sort_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<StepTemplate order={self.step_order} "
            f"strategy={self.strategy_kind} group={self.parallel_group_id}>"
        )

    def to_dto(self) -> StepTemplate:
        from portal_kernel.domain.workflow import StepTemplate, strategy_from_fields

        return StepTemplate(
            step_order=self.step_order,
            strategy=strategy_from_fields(
                self.strategy_kind,
                user_id=self.strategy_user_id,
                role=self.strategy_role,
                group_id=self.strategy_group_id,
                department_id=self.strategy_department_id,
            ),
            step_template_id=self.id,
            parallel_group_id=self.parallel_group_id,
            minimum_approvals=self.minimum_approvals,
            requires_quiz=self.requires_quiz,
            passing_score=self.passing_score,
            escalation_timeout_seconds=self.escalation_timeout_seconds,
            escalation_user_id=self.escalation_user_id,
            quiz_questions=tuple(q.to_dto() for q in self.questions),
        )


class QuizQuestionModel(Base):
    """One question in a step template's quiz bank."""

    __tablename__ = "quiz_questions"

    step_template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("step_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[Any]] = mapped_column(JSONDocument, nullable=False, default=list)
    correct_answer: Mapped[str] = mapped_column(String(500), nullable=False)
    sort_order: Mapped[int] = mapped_column(nullable=False, default=0)

    step_template: Mapped["StepTemplateModel"] = relationship(
        "StepTemplateModel", back_populates="questions",
    )

    def to_dto(self) -> QuizQuestion:
        from portal_kernel.domain.workflow import QuizQuestion

        return QuizQuestion(
            question_id=self.id,
            prompt=self.prompt,
            correct_answer=self.correct_answer,
            options=tuple(self.options or ()),
            sort_order=self.sort_order,
        )
