"""
Quiz gate domain types (``portal_kernel.domain.quiz``).

Responsibility:
    Value objects for scoring a submitter's answers against a step's quiz
    bank and for reporting the result of a quiz submission.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Only the request's submitter answers a quiz; an approver only ever
      sees the verdict (``QuizOutcome.NOT_SUBMITTER`` otherwise).
    - A verdict, once recorded on a step, is returned unchanged on
      re-submission unless retakes are enabled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


@dataclass(frozen=True)
class QuizVerdict:
    """Score of one answer set."""

    correct_count: int
    total_questions: int
    score: int
    passing_score: int
    passed: bool


@dataclass(frozen=True)
class QuizAnswerRecord:
    """One stored answer, as shown back to the submitter."""

    question_id: UUID
    selected_answer: str
    is_correct: bool
    answered_at: datetime


class QuizOutcome(str, Enum):
    SCORED = "scored"
    ALREADY_SCORED = "already_scored"
    NOT_SUBMITTER = "not_submitter"
    QUIZ_NOT_REQUIRED = "quiz_not_required"
    QUIZ_UNAVAILABLE = "quiz_unavailable"
    STEP_CLOSED = "step_closed"


QUIZ_OUTCOME_MESSAGES: dict[QuizOutcome, str] = {
    QuizOutcome.SCORED: "quiz scored",
    QuizOutcome.ALREADY_SCORED: "quiz already completed",
    QuizOutcome.NOT_SUBMITTER: "only the request submitter can fill the quiz",
    QuizOutcome.QUIZ_NOT_REQUIRED: "quiz is not required for this step",
    QuizOutcome.QUIZ_UNAVAILABLE: "quiz questions not found for this step",
    QuizOutcome.STEP_CLOSED: "step is already closed",
}


@dataclass(frozen=True)
class QuizSubmissionResult:
    outcome: QuizOutcome
    request_id: UUID
    step_id: UUID
    verdict: QuizVerdict | None = None

    @property
    def passed(self) -> bool:
        return self.verdict is not None and self.verdict.passed

    @property
    def success(self) -> bool:
        return self.outcome in (QuizOutcome.SCORED, QuizOutcome.ALREADY_SCORED)

    @property
    def message(self) -> str:
        return QUIZ_OUTCOME_MESSAGES[self.outcome]
