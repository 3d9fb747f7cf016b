"""ORM models for the contract kernel."""

from contract_kernel.models.approval import ApprovalModel
from contract_kernel.models.audit_log import AuditAction, AuditLogEntryModel
from contract_kernel.models.contract import ContractModel
from contract_kernel.models.version import ContractVersionModel

__all__ = [
    "ApprovalModel",
    "AuditAction",
    "AuditLogEntryModel",
    "ContractModel",
    "ContractVersionModel",
]
