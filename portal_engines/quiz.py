"""
portal_engines.quiz -- Pure quiz scoring.

Responsibility:
    Grade a submitted answer set against a step's question bank and turn
    the result into a pass/fail verdict against a passing score.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Exact-match comparison of the selected answer to the correct answer.
    - Answers to question ids outside the bank are ignored; unanswered
      questions count as incorrect.
    - Score is a whole percentage; ``passed`` iff ``score >= passing_score``.
      A passing score of 100 means every question must be correct.
    - Deterministic: the same answers always produce the same verdict.

Failure modes:
    - ValueError on an empty question bank or a passing score outside 0..100.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from portal_kernel.domain.quiz import QuizVerdict
from portal_kernel.domain.workflow import QuizQuestion

from portal_engines.tracer import traced_engine


@dataclass(frozen=True)
class GradedAnswer:
    question_id: UUID
    selected_answer: str
    is_correct: bool


def grade_answers(
    questions: Sequence[QuizQuestion],
    answers: Mapping[UUID, str],
) -> tuple[GradedAnswer, ...]:
    """Per-question correctness for every answered question in the bank."""
    return tuple(
        GradedAnswer(
            question_id=q.question_id,
            selected_answer=answers[q.question_id],
            is_correct=answers[q.question_id] == q.correct_answer,
        )
        for q in questions
        if q.question_id in answers
    )


@traced_engine("quiz", "1.0", fingerprint_fields=("passing_score",))
def score_answers(
    questions: Sequence[QuizQuestion],
    answers: Mapping[UUID, str],
    *,
    passing_score: int,
) -> QuizVerdict:
    if not questions:
        raise ValueError("Cannot score a quiz with no questions")
    if not 0 <= passing_score <= 100:
        raise ValueError(f"passing_score must be within 0..100, got {passing_score}")

    correct = sum(1 for g in grade_answers(questions, answers) if g.is_correct)
    total = len(questions)
    score = round(correct * 100 / total)

    return QuizVerdict(
        correct_count=correct,
        total_questions=total,
        score=score,
        passing_score=passing_score,
        passed=score >= passing_score,
    )
