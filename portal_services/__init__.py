"""
portal_services -- Package init and public API.

Responsibility:
    The exposed approval workflow surface.  Callers (HTTP handlers,
    schedulers) construct one ``ApprovalWorkflowService`` per process and
    call it; this package owns transaction boundaries and the retry
    contract for optimistic-concurrency conflicts.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        portal_services/ -> portal_kernel/, portal_engines/, portal_config/
        portal_kernel/   -> portal_services/ (FORBIDDEN)
        portal_engines/  -> portal_services/ (FORBIDDEN)
"""

from portal_services.approval_workflow import (
    ApprovalWorkflowService,
    BulkApprovalItem,
    BulkApprovalResult,
    StepActionResult,
)

__all__ = [
    "ApprovalWorkflowService",
    "BulkApprovalItem",
    "BulkApprovalResult",
    "StepActionResult",
]
