"""
Contract kernel domain layer.

Pure value objects and functions: the status state machine, approval
tracks and their fold, routing policy, available actions, the diff engine
and the collaborator Protocols.  Nothing here performs I/O.
"""

from contract_kernel.domain.actions import Action, compute_available_actions
from contract_kernel.domain.approval import (
    Approval,
    ApprovalState,
    ApprovalTrack,
    EscalationLevel,
    compute_review_status,
    latest_by_track,
)
from contract_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from contract_kernel.domain.diff import ChangeLog, diff_snapshots
from contract_kernel.domain.dtos import (
    AuditLogEntry,
    Contract,
    ContractVersion,
    CounterpartyInfo,
    NewContract,
)
from contract_kernel.domain.routing import ApprovalRoutingPolicy
from contract_kernel.domain.status import (
    TERMINAL_STATUSES,
    ContractStatus,
    LifecycleEvent,
    StatusStateMachine,
    transition,
)

__all__ = [
    "Action",
    "compute_available_actions",
    "Approval",
    "ApprovalState",
    "ApprovalTrack",
    "EscalationLevel",
    "compute_review_status",
    "latest_by_track",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ChangeLog",
    "diff_snapshots",
    "AuditLogEntry",
    "Contract",
    "ContractVersion",
    "CounterpartyInfo",
    "NewContract",
    "ApprovalRoutingPolicy",
    "TERMINAL_STATUSES",
    "ContractStatus",
    "LifecycleEvent",
    "StatusStateMachine",
    "transition",
]
