"""
Typed Exception Hierarchy for the Portal Kernel.

===============================================================================
WHAT IS AN EXCEPTION HERE (AND WHAT IS NOT)
===============================================================================

The approval engine distinguishes two kinds of failure:

  1. Business-rule outcomes -- an actor who is not the approver, a step that
     is not active yet, a quiz gate, a step that was already resolved.  These
     are legitimate answers to a legitimate question and are returned as
     ``ResolutionOutcome`` values inside result dataclasses
     (``portal_kernel.domain.workflow``).  They are NEVER raised.

  2. Errors -- the request does not exist, the template cannot be resolved
     into approvers, the optimistic-concurrency token moved underneath us,
     the caller cancelled.  These are raised as the typed exceptions below.

Every exception carries:
  - a ``code`` CLASS attribute (machine-readable, API-safe)
  - structured attributes (never parse the message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PortalKernelError (base)
    |
    +-- RequestError
    |   +-- RequestNotFoundError
    |   +-- StepNotFoundError
    |
    +-- TemplateError
    |   +-- TemplateNotFoundError
    |   +-- InvalidTemplateError
    |   +-- TemplateResolutionError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- DelegationError
    |   +-- DelegationNotFoundError
    |   +-- InvalidDelegationError
    |
    +-- OperationCancelledError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|--------------------------------------
Request      | REQUEST_NOT_FOUND          | Request ID doesn't exist
             | STEP_NOT_FOUND             | Step ID not part of the request
-------------|----------------------------|--------------------------------------
Template     | TEMPLATE_NOT_FOUND         | Template ID doesn't exist / inactive
             | INVALID_TEMPLATE           | Template definition fails validation
             | TEMPLATE_RESOLUTION_FAILED | No eligible approver for a step
-------------|----------------------------|--------------------------------------
Concurrency  | CONCURRENCY_CONFLICT       | Request version token moved
-------------|----------------------------|--------------------------------------
Delegation   | DELEGATION_NOT_FOUND       | Delegation ID doesn't exist
             | INVALID_DELEGATION         | Self-delegation or inverted window
-------------|----------------------------|--------------------------------------
Cancellation | OPERATION_CANCELLED        | Caller cancelled before any write
-------------|----------------------------|--------------------------------------
Config       | CONFIGURATION_INVALID      | Engine YAML has an invalid value

===============================================================================
HANDLING BY CATEGORY
===============================================================================

  - RequestError      -> 404-style response
  - TemplateError     -> submission refused, nothing persisted
  - ConcurrencyError  -> reload and retry (the facade does this itself)
  - OperationCancelledError -> nothing landed, safe to re-issue
"""

from __future__ import annotations


class PortalKernelError(Exception):
    """
    Base exception for all portal kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "PORTAL_KERNEL_ERROR"


# Request-related exceptions


class RequestError(PortalKernelError):
    """Base exception for request/step lookup errors."""

    code: str = "REQUEST_ERROR"


class RequestNotFoundError(RequestError):
    """Request ID does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class StepNotFoundError(RequestError):
    """Step ID is not part of the given request."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, request_id: str, step_id: str):
        self.request_id = request_id
        self.step_id = step_id
        super().__init__(f"Approval step {step_id} not found on request {request_id}")


# Template-related exceptions


class TemplateError(PortalKernelError):
    """Base exception for template errors."""

    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    """Template ID does not exist or is no longer active."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Request template not found or inactive: {template_id}")


class InvalidTemplateError(TemplateError):
    """Template definition fails structural validation."""

    code: str = "INVALID_TEMPLATE"

    def __init__(self, template_name: str, errors: list[str]):
        self.template_name = template_name
        self.errors = list(errors)
        super().__init__(
            f"Template '{template_name}' is invalid: " + "; ".join(self.errors)
        )


class TemplateResolutionError(TemplateError):
    """A step's approver strategy resolved to no eligible approver.

    Raised at submission time.  Fatal to the submission: no request row
    and no step rows are persisted.
    """

    code: str = "TEMPLATE_RESOLUTION_FAILED"

    def __init__(self, step_order: int, strategy: str, reason: str):
        self.step_order = step_order
        self.strategy = strategy
        self.reason = reason
        super().__init__(
            f"Cannot resolve approvers for step {step_order} ({strategy}): {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(PortalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Optimistic-concurrency token mismatch on a request.

    The request (and therefore its step list) was modified by another
    transaction after it was loaded.  Callers reload and retry; state is
    never merged.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, request_id: str, expected_version: int):
        self.request_id = request_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrency conflict on request {request_id}: "
            f"expected version {expected_version} was modified by another transaction"
        )


# Delegation-related exceptions


class DelegationError(PortalKernelError):
    """Base exception for delegation administration errors."""

    code: str = "DELEGATION_ERROR"


class DelegationNotFoundError(DelegationError):
    code: str = "DELEGATION_NOT_FOUND"

    def __init__(self, delegation_id: str):
        self.delegation_id = delegation_id
        super().__init__(f"Delegation not found: {delegation_id}")


class InvalidDelegationError(DelegationError):
    """Delegation to oneself, or a window that ends before it starts."""

    code: str = "INVALID_DELEGATION"

    def __init__(self, from_user_id: str, to_user_id: str, reason: str):
        self.from_user_id = from_user_id
        self.to_user_id = to_user_id
        self.reason = reason
        super().__init__(f"Invalid delegation {from_user_id} -> {to_user_id}: {reason}")


# Cancellation


class OperationCancelledError(PortalKernelError):
    """The caller's cancellation signal fired before any write landed."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, operation: str, request_id: str):
        self.operation = operation
        self.request_id = request_id
        super().__init__(f"{operation} on request {request_id} cancelled before commit")



# Configuration


class ConfigurationError(PortalKernelError, ValueError):
    """Engine configuration file contains an invalid or missing value."""

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
