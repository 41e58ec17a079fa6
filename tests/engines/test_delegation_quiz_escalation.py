"""
Tests for the small pure engines: delegation choice, quiz scoring and
escalation predicates.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from portal_engines.delegation import resolve_acting_user, select_active_delegation
from portal_engines.escalation import (
    escalation_deadline,
    escalation_target,
    is_escalation_due,
    is_reminder_due,
)
from portal_engines.quiz import grade_answers, score_answers
from portal_kernel.domain.delegation import Delegation
from portal_kernel.domain.workflow import QuizQuestion, StepStatus

T0 = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


# =========================================================================
# Delegation
# =========================================================================


def make_delegation(
    from_user, to_user, start=T0, end=None, created_at=T0, is_active=True,
) -> Delegation:
    return Delegation(
        delegation_id=uuid4(),
        from_user_id=from_user,
        to_user_id=to_user,
        start_date=start,
        end_date=end,
        created_at=created_at,
        is_active=is_active,
    )


class TestSelectActiveDelegation:
    """Tests for select_active_delegation and resolve_acting_user."""

    def test_no_delegation_returns_approver(self):
        approver = uuid4()

        assert resolve_acting_user([], approver, T0) == approver

    def test_open_ended_delegation_applies(self):
        approver, delegate = uuid4(), uuid4()
        d = make_delegation(approver, delegate)

        assert resolve_acting_user([d], approver, T0 + timedelta(days=30)) == delegate

    def test_window_bounds_are_inclusive(self):
        approver, delegate = uuid4(), uuid4()
        end = T0 + timedelta(days=2)
        d = make_delegation(approver, delegate, end=end)

        assert select_active_delegation([d], approver, T0) == d
        assert select_active_delegation([d], approver, end) == d
        assert select_active_delegation([d], approver, end + timedelta(seconds=1)) is None
        assert select_active_delegation([d], approver, T0 - timedelta(seconds=1)) is None

    def test_inactive_delegation_ignored(self):
        approver = uuid4()
        d = make_delegation(approver, uuid4(), is_active=False)

        assert select_active_delegation([d], approver, T0) is None

    def test_most_recently_created_wins(self):
        approver, first, second = uuid4(), uuid4(), uuid4()
        older = make_delegation(approver, first, created_at=T0)
        newer = make_delegation(approver, second, created_at=T0 + timedelta(hours=1))

        assert resolve_acting_user([newer, older], approver, T0 + timedelta(hours=2)) == second
        assert resolve_acting_user([older, newer], approver, T0 + timedelta(hours=2)) == second

    def test_delegations_do_not_chain(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        delegations = [make_delegation(a, b), make_delegation(b, c)]

        assert resolve_acting_user(delegations, a, T0) == b

    def test_other_approvers_delegations_ignored(self):
        approver = uuid4()
        d = make_delegation(uuid4(), uuid4())

        assert resolve_acting_user([d], approver, T0) == approver


# =========================================================================
# Quiz
# =========================================================================


def make_questions(*correct: str) -> tuple[QuizQuestion, ...]:
    return tuple(
        QuizQuestion(question_id=uuid4(), prompt=f"q{i}", correct_answer=c, sort_order=i)
        for i, c in enumerate(correct)
    )


class TestScoreAnswers:
    """Tests for score_answers and grade_answers."""

    def test_all_correct_passes_at_100(self):
        qs = make_questions("a", "b")
        answers = {qs[0].question_id: "a", qs[1].question_id: "b"}

        verdict = score_answers(qs, answers, passing_score=100)

        assert verdict.passed is True
        assert verdict.score == 100
        assert verdict.correct_count == 2

    def test_one_wrong_fails_at_100(self):
        qs = make_questions("a", "b")
        answers = {qs[0].question_id: "a", qs[1].question_id: "x"}

        verdict = score_answers(qs, answers, passing_score=100)

        assert verdict.passed is False
        assert verdict.score == 50

    def test_threshold_is_inclusive(self):
        qs = make_questions("a", "b")
        answers = {qs[0].question_id: "a"}

        assert score_answers(qs, answers, passing_score=50).passed is True

    def test_unanswered_counts_as_wrong_and_unknown_ignored(self):
        qs = make_questions("a", "b", "c", "d")
        answers = {qs[0].question_id: "a", uuid4(): "a"}

        verdict = score_answers(qs, answers, passing_score=0)

        assert verdict.correct_count == 1
        assert verdict.total_questions == 4
        assert verdict.score == 25

    def test_comparison_is_exact(self):
        qs = make_questions("Yes")

        assert score_answers(qs, {qs[0].question_id: "yes"}, passing_score=100).passed is False

    def test_empty_question_bank_raises(self):
        with pytest.raises(ValueError, match="no questions"):
            score_answers((), {}, passing_score=100)

    def test_passing_score_out_of_range_raises(self):
        with pytest.raises(ValueError, match="0..100"):
            score_answers(make_questions("a"), {}, passing_score=101)

    def test_grade_answers_only_answered_questions(self):
        qs = make_questions("a", "b")

        graded = grade_answers(qs, {qs[1].question_id: "b"})

        assert len(graded) == 1
        assert graded[0].question_id == qs[1].question_id
        assert graded[0].is_correct is True

    @given(
        st.lists(st.sampled_from(["a", "b", "c"]), min_size=1, max_size=10),
        st.lists(st.sampled_from(["a", "b", "c", None]), min_size=10, max_size=10),
        st.integers(min_value=0, max_value=100),
    )
    def test_same_answers_same_verdict(self, correct, picks, passing):
        qs = make_questions(*correct)
        answers = {q.question_id: p for q, p in zip(qs, picks) if p is not None}

        first = score_answers(qs, answers, passing_score=passing)
        second = score_answers(qs, dict(answers), passing_score=passing)

        assert first == second
        assert 0 <= first.score <= 100
        assert first.passed == (first.score >= passing)


# =========================================================================
# Escalation
# =========================================================================


def make_step(**overrides):
    fields = dict(
        status=StepStatus.IN_REVIEW.value,
        started_at=T0,
        escalation_timeout_seconds=3600,
        escalated_at=None,
        escalation_user_id=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestEscalationPredicates:
    """Tests for escalation_deadline, is_escalation_due and friends."""

    def test_deadline(self):
        assert escalation_deadline(make_step()) == T0 + timedelta(hours=1)

    def test_no_timeout_no_deadline(self):
        assert escalation_deadline(make_step(escalation_timeout_seconds=None)) is None

    def test_due_strictly_after_deadline(self):
        step = make_step()

        assert is_escalation_due(step, T0 + timedelta(hours=1)) is False
        assert is_escalation_due(step, T0 + timedelta(hours=1, seconds=1)) is True

    def test_requires_survey_step_can_escalate(self):
        step = make_step(status=StepStatus.REQUIRES_SURVEY.value)

        assert is_escalation_due(step, T0 + timedelta(days=1)) is True

    def test_already_escalated_not_due(self):
        step = make_step(escalated_at=T0 + timedelta(hours=2))

        assert is_escalation_due(step, T0 + timedelta(days=1)) is False

    def test_pending_or_terminal_not_due(self):
        later = T0 + timedelta(days=1)

        assert is_escalation_due(make_step(status=StepStatus.PENDING.value, started_at=None), later) is False
        assert is_escalation_due(make_step(status=StepStatus.APPROVED.value), later) is False

    def test_target_prefers_step_user(self):
        own, default = uuid4(), uuid4()

        assert escalation_target(make_step(escalation_user_id=own), default) == own
        assert escalation_target(make_step(), default) == default
        assert escalation_target(make_step(), None) is None

    def test_reminder_due_after_threshold(self):
        step = make_step(escalation_timeout_seconds=None)

        assert is_reminder_due(step, T0 + timedelta(hours=71), timedelta(hours=72)) is False
        assert is_reminder_due(step, T0 + timedelta(hours=72), timedelta(hours=72)) is True
