"""
TemplateService -- request template authoring and snapshotting.

Responsibility:
    Validates and persists request templates, and hands the orchestrator a
    frozen snapshot of an active template at submission time.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Step orders are positive; a step order shared by several step
      definitions must belong to one parallel group, and a parallel group
      never spans step orders.
    - ``minimum_approvals >= 1``, consistent within a group, and greater
      than one only on parallel steps.
    - Passing scores lie within 0..100; a quiz step has questions.
    - Deactivated templates cannot be snapshotted; requests already
      submitted are unaffected because they carry their own step copy.

Failure modes:
    - InvalidTemplateError listing every validation problem at once.
    - TemplateNotFoundError for an unknown or inactive template.
"""

from __future__ import annotations

from collections import defaultdict
from uuid import UUID

from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.workflow import (
    TemplateDefinition,
    TemplateSnapshot,
    strategy_fields,
)
from portal_kernel.exceptions import InvalidTemplateError, TemplateNotFoundError
from portal_kernel.logging_config import get_logger
from portal_kernel.models.template import (
    QuizQuestionModel,
    RequestTemplateModel,
    StepTemplateModel,
)
from portal_kernel.services.base import BaseService

logger = get_logger("services.template")


def validate_template(definition: TemplateDefinition) -> list[str]:
    """Every structural problem with a template definition (empty if valid)."""
    errors: list[str] = []
    if not definition.name or not definition.name.strip():
        errors.append("name must not be empty")

    orders: dict[int, list] = defaultdict(list)
    group_orders: dict[str, set[int]] = defaultdict(set)

    for i, step in enumerate(definition.steps):
        label = f"step[{i}] (order {step.step_order})"
        orders[step.step_order].append(step)
        if step.step_order < 1:
            errors.append(f"{label}: step_order must be >= 1")
        if step.minimum_approvals < 1:
            errors.append(f"{label}: minimum_approvals must be >= 1")
        if not step.is_parallel and step.minimum_approvals > 1:
            errors.append(f"{label}: minimum_approvals > 1 requires a parallel group")
        if step.passing_score is not None and not 0 <= step.passing_score <= 100:
            errors.append(f"{label}: passing_score must be within 0..100")
        if step.escalation_timeout_seconds is not None and step.escalation_timeout_seconds <= 0:
            errors.append(f"{label}: escalation_timeout_seconds must be positive")
        if step.requires_quiz and not step.quiz_questions:
            errors.append(f"{label}: requires_quiz but has no quiz questions")
        for q in step.quiz_questions:
            if q.options and q.correct_answer not in q.options:
                errors.append(
                    f"{label}: correct answer of question '{q.prompt}' is not one of its options"
                )
        if step.is_parallel:
            group_orders[step.parallel_group_id].add(step.step_order)

    for order, members in sorted(orders.items()):
        if len(members) > 1:
            groups = {m.parallel_group_id for m in members}
            if None in groups or len(groups) != 1:
                errors.append(
                    f"order {order}: steps sharing an order must share one parallel group"
                )
        if len({m.minimum_approvals for m in members}) > 1:
            errors.append(f"order {order}: inconsistent minimum_approvals within the group")

    for group_id, group_order_set in sorted(group_orders.items()):
        if len(group_order_set) > 1:
            errors.append(
                f"parallel group '{group_id}' spans step orders {sorted(group_order_set)}"
            )

    return errors


class TemplateService(BaseService[RequestTemplateModel]):
    """Template authoring and snapshot access."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_template(self, definition: TemplateDefinition) -> TemplateSnapshot:
        """Validate and persist a template.

        Raises:
            InvalidTemplateError: If the definition fails validation.
        """
        errors = validate_template(definition)
        if errors:
            logger.warning(
                "template_rejected",
                extra={"template_name": definition.name, "errors": errors},
            )
            raise InvalidTemplateError(definition.name, errors)

        template = RequestTemplateModel(
            name=definition.name,
            description=definition.description,
            category=definition.category,
            is_active=True,
            created_at=self._clock.now(),
        )
        for step in definition.steps:
            step_model = StepTemplateModel(
                step_order=step.step_order,
                parallel_group_id=step.parallel_group_id,
                minimum_approvals=step.minimum_approvals,
                requires_quiz=step.requires_quiz,
                passing_score=step.passing_score,
                escalation_timeout_seconds=step.escalation_timeout_seconds,
                escalation_user_id=step.escalation_user_id,
                **strategy_fields(step.strategy),
            )
            for q in step.quiz_questions:
                step_model.questions.append(
                    QuizQuestionModel(
                        id=q.question_id,
                        prompt=q.prompt,
                        options=list(q.options),
                        correct_answer=q.correct_answer,
                        sort_order=q.sort_order,
                    )
                )
            template.steps.append(step_model)

        self.session.add(template)
        self.session.flush()

        logger.info(
            "template_created",
            extra={
                "template_id": str(template.id),
                "template_name": template.name,
                "step_count": len(template.steps),
            },
        )
        return template.to_dto()

    def get_snapshot(self, template_id: UUID) -> TemplateSnapshot:
        """Frozen view of an active template.

        Raises:
            TemplateNotFoundError: If the template is unknown or inactive.
        """
        template = self.session.get(RequestTemplateModel, template_id)
        if template is None or not template.is_active:
            raise TemplateNotFoundError(str(template_id))
        return template.to_dto()

    def deactivate_template(self, template_id: UUID) -> None:
        template = self.session.get(RequestTemplateModel, template_id)
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        template.is_active = False
        self.session.flush()
        logger.info("template_deactivated", extra={"template_id": str(template_id)})
