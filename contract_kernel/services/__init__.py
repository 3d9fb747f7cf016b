"""Services for the contract kernel (write side)."""

from contract_kernel.services.approval_orchestrator import (
    ApprovalOrchestrator,
    LifecycleOutcome,
)
from contract_kernel.services.audit_trail import AuditTrail
from contract_kernel.services.authorization import (
    GrantTablePermissionChecker,
    ensure_permitted,
)
from contract_kernel.services.contract_lock import ContractLockRegistry, lock_contract_row
from contract_kernel.services.lifecycle_service import SYSTEM_ACTOR_ID, LifecycleService
from contract_kernel.services.notifications import LoggingNotificationDispatcher
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.services.version_ledger import VersionLedger

__all__ = [
    "ApprovalOrchestrator",
    "AuditTrail",
    "ContractLockRegistry",
    "GrantTablePermissionChecker",
    "LifecycleOutcome",
    "LifecycleService",
    "LoggingNotificationDispatcher",
    "SYSTEM_ACTOR_ID",
    "SequenceService",
    "VersionLedger",
    "ensure_permitted",
    "lock_contract_row",
]
