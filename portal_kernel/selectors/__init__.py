"""Read-only selectors."""

from portal_kernel.selectors.approval_selector import ApprovalSelector
from portal_kernel.selectors.base import BaseSelector

__all__ = ["ApprovalSelector", "BaseSelector"]
