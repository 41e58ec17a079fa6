"""
Portal Kernel - Request Approval Workflow Engine

The state machine behind the intranet request system:
- Template materialization into per-request approval steps
- Sequential and parallel (minimum-approvals) step groups
- Delegation-aware approver authorization
- Quiz gates owned by the submitter
- Timeout escalation without restarting steps
- Optimistic concurrency at the request boundary
"""

__version__ = "0.1.0"
