from .approval import (
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalRequest,
    ManualApprovalGate,
)

__all__ = [
    "ApprovalDecision",
    "ApprovalOutcome",
    "ApprovalRequest",
    "ManualApprovalGate",
]
