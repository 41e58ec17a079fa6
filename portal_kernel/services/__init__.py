"""
Kernel services: the imperative shell around the pure engines.

Services flush within the caller's transaction; only the facade in
``portal_services`` and the escalation sweeper commit.
"""

from portal_kernel.services.delegation_directory import (
    DelegationService,
    SqlDelegationDirectory,
)
from portal_kernel.services.escalation_scheduler import EscalationScheduler
from portal_kernel.services.escalation_sweeper import EscalationSweeper
from portal_kernel.services.notification_dispatcher import (
    AuditLogSink,
    NotificationDispatcher,
)
from portal_kernel.services.quiz_service import QuizService
from portal_kernel.services.request_store import RequestStore
from portal_kernel.services.template_service import TemplateService, validate_template
from portal_kernel.services.workflow_orchestrator import WorkflowOrchestrator

__all__ = [
    "AuditLogSink",
    "DelegationService",
    "EscalationScheduler",
    "EscalationSweeper",
    "NotificationDispatcher",
    "QuizService",
    "RequestStore",
    "SqlDelegationDirectory",
    "TemplateService",
    "validate_template",
    "WorkflowOrchestrator",
]
