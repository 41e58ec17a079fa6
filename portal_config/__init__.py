"""
portal_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain engine settings at runtime through
    ``get_engine_config()``, and the loader for YAML request templates
    through ``load_template_definitions()``.

Architecture position:
    Configuration.  Sits above ``portal_kernel`` and below
    ``portal_services``.  The kernel MUST NEVER import from
    ``portal_config``; template definitions are converted into kernel
    ``TemplateDefinition`` values by ``TemplateDef.to_template_definition``.

Invariants enforced:
    - Packaged defaults are always applied first; a supplied file overrides
      them key by key.
    - Every returned object is frozen.

Failure modes:
    - ``FileNotFoundError`` -- the given path does not exist.
    - ``ConfigurationError`` (a ``ValueError``) -- a value has the wrong
      type or is out of range.
"""

from __future__ import annotations

from pathlib import Path

from portal_config.loader import (
    load_yaml_file,
    merge_dicts,
    parse_engine_config,
    parse_templates,
)
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
from portal_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_engine_config(path: Path | str | None = None) -> EngineConfig:
    """Load engine settings: packaged defaults overlaid with ``path``.

    Raises:
        FileNotFoundError: If ``path`` is given and does not exist.
        ConfigurationError: If a value is invalid.
    """
    data = load_yaml_file(_DEFAULTS_PATH)
    if path is not None:
        data = merge_dicts(data, load_yaml_file(Path(path)))
    config = parse_engine_config(data)
    logger.info(
        "engine_config_loaded",
        extra={
            "source": str(path) if path is not None else "defaults",
            "max_conflict_retries": config.workflow.max_conflict_retries,
            "sweep_interval_seconds": config.escalation.sweep_interval_seconds,
        },
    )
    return config


def load_template_definitions(path: Path | str) -> tuple[TemplateDef, ...]:
    """Parse every template in a YAML file with a top-level ``templates`` list."""
    templates = parse_templates(load_yaml_file(Path(path)))
    logger.info(
        "template_definitions_loaded",
        extra={"source": str(path), "template_count": len(templates)},
    )
    return templates


__all__ = [
    "EngineConfig",
    "EscalationSettings",
    "NotificationSettings",
    "QuestionDef",
    "QuizSettings",
    "StepDef",
    "TemplateDef",
    "WorkflowSettings",
    "get_engine_config",
    "load_template_definitions",
]
