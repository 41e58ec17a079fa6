"""
Configuration Loader (``portal_config.loader``).

Responsibility
--------------
Loads YAML documents and parses them into typed ``portal_config.schema``
dataclass instances.  Callers go through ``portal_config.get_engine_config``
and ``portal_config.load_template_definitions``; the parse helpers are
public for tests.

Architecture position
---------------------
**Config layer**.  Depends on ``portal_kernel`` for domain enums and the
``ConfigurationError`` type; the kernel never imports from here.

Invariants enforced
-------------------
* Every parse error raises ``ConfigurationError`` (a ``ValueError``) naming
  the offending key; there are no silent defaults for invalid values.
* Every parsed object is a frozen dataclass from ``schema.py``.
* Question ids omitted in YAML are derived deterministically from the
  template name, step order and position, so reloading the same file
  yields the same ids.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong type or out-of-range value  -> ``ConfigurationError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import yaml

from portal_config.schema import (
    EngineConfig,
    EscalationSettings,
    NotificationSettings,
    QuestionDef,
    QuizSettings,
    StepDef,
    TemplateDef,
    WorkflowSettings,
)
from portal_kernel.domain.workflow import StrategyKind
from portal_kernel.exceptions import ConfigurationError

_QUESTION_NAMESPACE = uuid5(NAMESPACE_URL, "portal:quiz-question")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level document must be a mapping")
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` on ``base`` without mutating either."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(key, "must be a mapping")
    return value


def _int(value: Any, key: str, minimum: int | None = None, maximum: int | None = None) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(key, f"expected an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise ConfigurationError(key, f"must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigurationError(key, f"must be <= {maximum}, got {value}")
    return value


def _optional_int(value: Any, key: str, minimum: int | None = None, maximum: int | None = None) -> int | None:
    if value is None:
        return None
    return _int(value, key, minimum, maximum)


def _bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(key, f"expected true/false, got {value!r}")
    return value


def _uuid(value: Any, key: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ConfigurationError(key, f"not a valid UUID: {value!r}") from None


def _optional_uuid(value: Any, key: str) -> UUID | None:
    if value is None or value == "":
        return None
    return _uuid(value, key)


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """Parse an ``EngineConfig`` from a fully merged dict."""
    wf = _section(data, "workflow")
    esc = _section(data, "escalation")
    quiz = _section(data, "quiz")
    notif = _section(data, "notifications")

    return EngineConfig(
        workflow=WorkflowSettings(
            max_conflict_retries=_int(
                wf.get("max_conflict_retries", 3), "workflow.max_conflict_retries", minimum=0,
            ),
            exclude_submitter_from_fan_out=_bool(
                wf.get("exclude_submitter_from_fan_out", True),
                "workflow.exclude_submitter_from_fan_out",
            ),
        ),
        escalation=EscalationSettings(
            sweep_interval_seconds=_int(
                esc.get("sweep_interval_seconds", 300),
                "escalation.sweep_interval_seconds", minimum=1,
            ),
            default_escalation_user_id=_optional_uuid(
                esc.get("default_escalation_user_id"),
                "escalation.default_escalation_user_id",
            ),
            sla_reminder_after_hours=_optional_int(
                esc.get("sla_reminder_after_hours", 72),
                "escalation.sla_reminder_after_hours", minimum=1,
            ),
            reminder_cooldown_seconds=_int(
                esc.get("reminder_cooldown_seconds", 86400),
                "escalation.reminder_cooldown_seconds", minimum=0,
            ),
        ),
        quiz=QuizSettings(
            default_passing_score=_int(
                quiz.get("default_passing_score", 100),
                "quiz.default_passing_score", minimum=0, maximum=100,
            ),
            allow_retake=_bool(quiz.get("allow_retake", False), "quiz.allow_retake"),
        ),
        notifications=NotificationSettings(
            async_dispatch=_bool(
                notif.get("async_dispatch", True), "notifications.async_dispatch",
            ),
            max_workers=_int(
                notif.get("max_workers", 4), "notifications.max_workers", minimum=1,
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Template definitions
# ---------------------------------------------------------------------------


def parse_question(
    data: dict[str, Any], template_name: str, step_order: int, index: int,
) -> QuestionDef:
    key = f"{template_name}.steps[{step_order}].questions[{index}]"
    if "prompt" not in data or "correct_answer" not in data:
        raise ConfigurationError(key, "prompt and correct_answer are required")
    raw_id = data.get("id")
    question_id = (
        _uuid(raw_id, f"{key}.id")
        if raw_id is not None
        else uuid5(_QUESTION_NAMESPACE, f"{template_name}/{step_order}/{index}")
    )
    return QuestionDef(
        question_id=question_id,
        prompt=str(data["prompt"]),
        correct_answer=str(data["correct_answer"]),
        options=tuple(str(o) for o in data.get("options", ())),
    )


def parse_step(data: dict[str, Any], template_name: str) -> StepDef:
    """
    Parse a ``StepDef`` from a dict.

    The strategy is a nested mapping with a ``kind`` and the fields that
    kind needs, e.g. ``{kind: role, role: hr}``.  Escalation settings are
    an optional nested mapping with ``timeout_seconds`` and ``user_id``.
    """
    if "step_order" not in data:
        raise ConfigurationError(f"{template_name}.steps", "step_order is required")
    step_order = _int(data["step_order"], f"{template_name}.steps.step_order", minimum=1)
    key = f"{template_name}.steps[{step_order}]"

    strategy = data.get("strategy") or {}
    if not isinstance(strategy, dict) or "kind" not in strategy:
        raise ConfigurationError(f"{key}.strategy", "must be a mapping with a kind")
    try:
        kind = StrategyKind(strategy["kind"])
    except ValueError:
        raise ConfigurationError(
            f"{key}.strategy.kind", f"unknown strategy {strategy['kind']!r}",
        ) from None

    escalation = data.get("escalation") or {}
    questions = data.get("questions") or []

    return StepDef(
        step_order=step_order,
        strategy_kind=kind,
        strategy_user_id=_optional_uuid(strategy.get("user_id"), f"{key}.strategy.user_id"),
        strategy_role=strategy.get("role"),
        strategy_group_id=_optional_uuid(strategy.get("group_id"), f"{key}.strategy.group_id"),
        strategy_department_id=_optional_uuid(
            strategy.get("department_id"), f"{key}.strategy.department_id",
        ),
        parallel_group_id=data.get("parallel_group_id"),
        minimum_approvals=_int(
            data.get("minimum_approvals", 1), f"{key}.minimum_approvals", minimum=1,
        ),
        requires_quiz=_bool(data.get("requires_quiz", False), f"{key}.requires_quiz"),
        passing_score=_optional_int(
            data.get("passing_score"), f"{key}.passing_score", minimum=0, maximum=100,
        ),
        escalation_timeout_seconds=_optional_int(
            escalation.get("timeout_seconds"), f"{key}.escalation.timeout_seconds", minimum=1,
        ),
        escalation_user_id=_optional_uuid(
            escalation.get("user_id"), f"{key}.escalation.user_id",
        ),
        questions=tuple(
            parse_question(q, template_name, step_order, i)
            for i, q in enumerate(questions)
        ),
    )


def parse_template(data: dict[str, Any]) -> TemplateDef:
    """Parse a ``TemplateDef`` from a dict."""
    name = data.get("name")
    if not name:
        raise ConfigurationError("templates", "every template needs a name")
    return TemplateDef(
        name=name,
        description=data.get("description"),
        category=data.get("category"),
        steps=tuple(parse_step(s, name) for s in data.get("steps", ())),
    )


def parse_templates(data: dict[str, Any]) -> tuple[TemplateDef, ...]:
    templates = data.get("templates") or []
    if not isinstance(templates, list):
        raise ConfigurationError("templates", "must be a list")
    return tuple(parse_template(t) for t in templates)
