"""ORM models for the approval workflow engine."""

from portal_kernel.models.delegation import ApprovalDelegationModel
from portal_kernel.models.request import (
    ApprovalStepModel,
    QuizAnswerModel,
    RequestCommentModel,
    RequestEditHistoryModel,
    RequestModel,
)
from portal_kernel.models.template import (
    QuizQuestionModel,
    RequestTemplateModel,
    StepTemplateModel,
)

__all__ = [
    "ApprovalDelegationModel",
    "ApprovalStepModel",
    "QuizAnswerModel",
    "QuizQuestionModel",
    "RequestCommentModel",
    "RequestEditHistoryModel",
    "RequestModel",
    "RequestTemplateModel",
    "StepTemplateModel",
]
