"""
Pure domain layer.

Immutable value objects, lifecycle enums and protocols with NO dependencies
on the ORM, the database or I/O.  Time enters only through ``Clock``.
"""

from portal_kernel.domain.activity import (
    CommentOutcome,
    CommentResult,
    EditOutcome,
    EditResult,
    RequestComment,
    RequestEdit,
)
from portal_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from portal_kernel.domain.delegation import Delegation
from portal_kernel.domain.directory import (
    DelegationDirectory,
    InMemoryOrgDirectory,
    OrgDirectory,
)
from portal_kernel.domain.events import (
    NotificationSink,
    WorkflowEvent,
    WorkflowEventType,
)
from portal_kernel.domain.quiz import (
    QuizAnswerRecord,
    QuizOutcome,
    QuizSubmissionResult,
    QuizVerdict,
)
from portal_kernel.domain.workflow import (
    ApprovalRequest,
    ApprovalStep,
    DepartmentRoleStrategy,
    DirectSupervisorStrategy,
    FixedUser,
    GroupOutcome,
    QuizQuestion,
    RequestDraft,
    RequestPriority,
    RequestStatus,
    ResolutionOutcome,
    ResolutionResult,
    RoleGroupStrategy,
    RoleStrategy,
    StepDecision,
    StepStatus,
    StepTemplate,
    SubmissionResult,
    SweepReport,
    TemplateDefinition,
    TemplateSnapshot,
)

__all__ = [
    # Edits and comments
    "CommentOutcome",
    "CommentResult",
    "EditOutcome",
    "EditResult",
    "RequestComment",
    "RequestEdit",
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Directory
    "Delegation",
    "DelegationDirectory",
    "InMemoryOrgDirectory",
    "OrgDirectory",
    # Events
    "NotificationSink",
    "WorkflowEvent",
    "WorkflowEventType",
    # Quiz
    "QuizAnswerRecord",
    "QuizOutcome",
    "QuizSubmissionResult",
    "QuizVerdict",
    # Workflow
    "ApprovalRequest",
    "ApprovalStep",
    "DepartmentRoleStrategy",
    "DirectSupervisorStrategy",
    "FixedUser",
    "GroupOutcome",
    "QuizQuestion",
    "RequestDraft",
    "RequestPriority",
    "RequestStatus",
    "ResolutionOutcome",
    "ResolutionResult",
    "RoleGroupStrategy",
    "RoleStrategy",
    "StepDecision",
    "StepStatus",
    "StepTemplate",
    "SubmissionResult",
    "SweepReport",
    "TemplateDefinition",
    "TemplateSnapshot",
]
