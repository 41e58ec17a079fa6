"""
QuizService -- the quiz gate in front of quiz-requiring approval steps.

Responsibility:
    Records the submitter's answers for a step's quiz, scores them through
    the pure quiz engine, and stores the verdict on the step so the
    orchestrator can let (or refuse to let) the approval through.

Architecture position:
    Kernel > Services.  Scoring is delegated to ``portal_engines.quiz``.

Invariants enforced:
    - Only the request's submitter may answer or read the answers; the
      approver only ever sees ``quiz_passed`` / ``quiz_score`` on the step.
    - One attempt per step unless retakes are enabled; re-submitting
      returns the verdict already recorded.
    - Passing score is the step's own, else the configured default.
    - Questions come from the copy taken when the request was submitted,
      never from the live template.
    - A step parked in ``requires_survey`` goes back to ``in_review`` once
      a verdict exists, and the request status is re-derived.
    - Writes go through the request's version token like every other
      change to the request.

Failure modes:
    - RequestNotFoundError / StepNotFoundError for unknown ids.
    - ConcurrencyConflictError on a concurrent write to the request.
"""

from __future__ import annotations

from collections.abc import Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from portal_engines.approval import derive_request_status
from portal_engines.quiz import grade_answers, score_answers
from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.quiz import (
    QuizAnswerRecord,
    QuizOutcome,
    QuizSubmissionResult,
    QuizVerdict,
)
from portal_kernel.domain.workflow import (
    TERMINAL_STEP_STATUSES,
    QuizQuestion,
    StepStatus,
)
from portal_kernel.exceptions import StepNotFoundError
from portal_kernel.logging_config import LogContext, get_logger
from portal_kernel.models.request import ApprovalStepModel, QuizAnswerModel, RequestModel
from portal_kernel.services.request_store import RequestStore

logger = get_logger("services.quiz")

DEFAULT_PASSING_SCORE = 100


class QuizService:
    """Quiz submission and verdict bookkeeping."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_passing_score: int = DEFAULT_PASSING_SCORE,
        allow_retake: bool = False,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._default_passing_score = default_passing_score
        self._allow_retake = allow_retake
        self._store = RequestStore(session)

    def submit_answers(
        self,
        request_id: UUID,
        step_id: UUID,
        user_id: UUID,
        answers: Mapping[UUID, str],
    ) -> QuizSubmissionResult:
        """Score the submitter's answers and record the verdict on the step."""
        with LogContext.bind(request_id=request_id, step_id=step_id, actor_id=user_id):
            request = self._store.get_request_with_steps(request_id)
            step = self._find_step(request, step_id)
            expected_version = request.version

            if user_id != request.submitter_id:
                logger.warning("quiz_answer_by_non_submitter")
                return self._result(QuizOutcome.NOT_SUBMITTER, request, step)
            if not step.requires_quiz:
                return self._result(QuizOutcome.QUIZ_NOT_REQUIRED, request, step)

            questions = step.snapshot_quiz()
            if step.quiz_passed is not None and not self._allow_retake:
                return self._result(
                    QuizOutcome.ALREADY_SCORED, request, step,
                    verdict=self._stored_verdict(step, questions),
                )
            if step.status in {s.value for s in TERMINAL_STEP_STATUSES}:
                return self._result(QuizOutcome.STEP_CLOSED, request, step)
            if not questions:
                return self._result(QuizOutcome.QUIZ_UNAVAILABLE, request, step)

            verdict = score_answers(
                questions, answers, passing_score=self._passing_score(step),
            )
            now = self._clock.now()

            step.answers.clear()
            for graded in grade_answers(questions, answers):
                step.answers.append(
                    QuizAnswerModel(
                        question_id=graded.question_id,
                        selected_answer=graded.selected_answer,
                        is_correct=graded.is_correct,
                        answered_at=now,
                    )
                )
            step.quiz_score = verdict.score
            step.quiz_passed = verdict.passed
            if step.status == StepStatus.REQUIRES_SURVEY.value:
                step.status = StepStatus.IN_REVIEW.value
            request.status = derive_request_status(request.steps).value

            self._store.save_request(request, expected_version)

            logger.info(
                "quiz_scored",
                extra={
                    "score": verdict.score,
                    "passing_score": verdict.passing_score,
                    "passed": verdict.passed,
                    "correct_count": verdict.correct_count,
                    "total_questions": verdict.total_questions,
                },
            )
            return self._result(QuizOutcome.SCORED, request, step, verdict=verdict)

    def answers_for_submitter(
        self,
        request_id: UUID,
        step_id: UUID,
        user_id: UUID,
    ) -> tuple[QuizAnswerRecord, ...] | None:
        """The stored answers, or None when ``user_id`` is not the submitter."""
        request = self._store.get_request_with_steps(request_id)
        step = self._find_step(request, step_id)
        if user_id != request.submitter_id:
            return None
        return tuple(a.to_dto() for a in step.answers)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _find_step(self, request: RequestModel, step_id: UUID) -> ApprovalStepModel:
        for s in request.steps:
            if s.id == step_id:
                return s
        raise StepNotFoundError(str(request.id), str(step_id))

    def _passing_score(self, step: ApprovalStepModel) -> int:
        if step.passing_score is not None:
            return step.passing_score
        return self._default_passing_score

    def _stored_verdict(
        self,
        step: ApprovalStepModel,
        questions: tuple[QuizQuestion, ...],
    ) -> QuizVerdict:
        return QuizVerdict(
            correct_count=sum(1 for a in step.answers if a.is_correct),
            total_questions=len(questions) or len(step.answers),
            score=step.quiz_score if step.quiz_score is not None else 0,
            passing_score=self._passing_score(step),
            passed=bool(step.quiz_passed),
        )

    def _result(
        self,
        outcome: QuizOutcome,
        request: RequestModel,
        step: ApprovalStepModel,
        verdict: QuizVerdict | None = None,
    ) -> QuizSubmissionResult:
        return QuizSubmissionResult(
            outcome=outcome,
            request_id=request.id,
            step_id=step.id,
            verdict=verdict,
        )
