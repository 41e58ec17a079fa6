"""
Engine configuration and template definition schema.

Defines the human-authored configuration artifacts.  YAML documents are
parsed into these types by the loader; the engine settings are consumed
by ``portal_services`` and the template definitions are converted into
kernel ``TemplateDefinition`` values before they are persisted.

Key distinction:
  EngineConfig = runtime knobs (retries, escalation, quiz, notifications)
  TemplateDef  = source artifact for a request template (versioned YAML)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from portal_kernel.domain.workflow import (
    QuizQuestion,
    StepTemplate,
    StrategyKind,
    TemplateDefinition,
    strategy_from_fields,
)

# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowSettings:
    """Request handling knobs."""

    max_conflict_retries: int = 3
    exclude_submitter_from_fan_out: bool = True


@dataclass(frozen=True)
class EscalationSettings:
    """Escalation sweep and SLA reminder knobs."""

    sweep_interval_seconds: int = 300
    default_escalation_user_id: UUID | None = None
    sla_reminder_after_hours: int | None = 72
    reminder_cooldown_seconds: int = 86400


@dataclass(frozen=True)
class QuizSettings:
    default_passing_score: int = 100
    allow_retake: bool = False


@dataclass(frozen=True)
class NotificationSettings:
    async_dispatch: bool = True
    max_workers: int = 4


@dataclass(frozen=True)
class EngineConfig:
    """Root engine configuration."""

    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    quiz: QuizSettings = field(default_factory=QuizSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)


# ---------------------------------------------------------------------------
# Template definitions (declarative data)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuestionDef:
    """A quiz question as authored in YAML."""

    question_id: UUID
    prompt: str
    correct_answer: str
    options: tuple[str, ...] = ()

    def to_question(self, sort_order: int) -> QuizQuestion:
        return QuizQuestion(
            question_id=self.question_id,
            prompt=self.prompt,
            correct_answer=self.correct_answer,
            options=self.options,
            sort_order=sort_order,
        )


@dataclass(frozen=True)
class StepDef:
    """One template step as authored in YAML."""

    step_order: int
    strategy_kind: StrategyKind
    strategy_user_id: UUID | None = None
    strategy_role: str | None = None
    strategy_group_id: UUID | None = None
    strategy_department_id: UUID | None = None
    parallel_group_id: str | None = None
    minimum_approvals: int = 1
    requires_quiz: bool = False
    passing_score: int | None = None
    escalation_timeout_seconds: int | None = None
    escalation_user_id: UUID | None = None
    questions: tuple[QuestionDef, ...] = ()

    def to_step_template(self) -> StepTemplate:
        strategy = strategy_from_fields(
            self.strategy_kind,
            user_id=self.strategy_user_id,
            role=self.strategy_role,
            group_id=self.strategy_group_id,
            department_id=self.strategy_department_id,
        )
        return StepTemplate(
            step_order=self.step_order,
            strategy=strategy,
            parallel_group_id=self.parallel_group_id,
            minimum_approvals=self.minimum_approvals,
            requires_quiz=self.requires_quiz,
            passing_score=self.passing_score,
            escalation_timeout_seconds=self.escalation_timeout_seconds,
            escalation_user_id=self.escalation_user_id,
            quiz_questions=tuple(
                q.to_question(i) for i, q in enumerate(self.questions)
            ),
        )


@dataclass(frozen=True)
class TemplateDef:
    """A request template as authored in YAML."""

    name: str
    steps: tuple[StepDef, ...] = ()
    description: str | None = None
    category: str | None = None

    def to_template_definition(self) -> TemplateDefinition:
        return TemplateDefinition(
            name=self.name,
            steps=tuple(s.to_step_template() for s in self.steps),
            description=self.description,
            category=self.category,
        )
