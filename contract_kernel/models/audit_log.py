"""
Module: contract_kernel.models.audit_log
Responsibility: ORM persistence for the per-contract, hash-chained audit log.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure value types in domain/.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener).
    - seq is 1..N per contract, allocated by SequenceService under the
      contract's counter row; UNIQUE(contract_id, seq) backs it.
    - hash = H(contract_id | seq | action | from | to | payload_hash |
      prev_hash).  Validated by AuditTrail.validate_chain.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    This IS the audit trail.  Every status transition, every orchestrator
    operation and every version write produces exactly one entry.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import Base, UUIDString
from contract_kernel.domain.dtos import AuditLogEntry
from contract_kernel.domain.status import ContractStatus


class AuditAction(str, Enum):
    """Tags recorded on audit log entries."""

    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    RESUBMITTED = "RESUBMITTED"
    RETURNED_TO_DRAFT = "RETURNED_TO_DRAFT"

    LEGAL_APPROVED = "LEGAL_APPROVED"
    LEGAL_HEAD_APPROVED = "LEGAL_HEAD_APPROVED"
    FINANCE_APPROVED = "FINANCE_APPROVED"
    LEGAL_REJECTED = "LEGAL_REJECTED"
    LEGAL_HEAD_REJECTED = "LEGAL_HEAD_REJECTED"
    FINANCE_REJECTED = "FINANCE_REJECTED"
    LEGAL_REVISION_REQUESTED = "LEGAL_REVISION_REQUESTED"
    LEGAL_HEAD_REVISION_REQUESTED = "LEGAL_HEAD_REVISION_REQUESTED"
    FINANCE_REVISION_REQUESTED = "FINANCE_REVISION_REQUESTED"
    ESCALATED = "ESCALATED"
    RETURNED_TO_MANAGER = "RETURNED_TO_MANAGER"

    SENT_TO_COUNTERPARTY = "SENT_TO_COUNTERPARTY"
    COUNTERSIGNED = "COUNTERSIGNED"
    ACTIVATED = "ACTIVATED"
    CANCELLED = "CANCELLED"
    TERMINATED = "TERMINATED"
    EXPIRED = "EXPIRED"

    VERSION_CREATED = "VERSION_CREATED"
    VERSION_RESTORED = "VERSION_RESTORED"


class AuditLogEntryModel(Base):
    """Persistent audit log entry."""

    __tablename__ = "contract_audit_log"

    __table_args__ = (
        UniqueConstraint("contract_id", "seq", name="uq_contract_audit_log_seq"),
        Index("ix_contract_audit_log_contract_seq", "contract_id", "seq"),
        Index("ix_contract_audit_log_action", "action"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.contract_id}#{self.seq} {self.action}>"

    def to_dto(self) -> AuditLogEntry:
        return AuditLogEntry(
            id=self.id,
            contract_id=self.contract_id,
            seq=self.seq,
            actor_id=self.actor_id,
            action=self.action,
            from_status=ContractStatus(self.from_status) if self.from_status else None,
            to_status=ContractStatus(self.to_status),
            comment=self.comment,
            payload=dict(self.payload or {}),
            created_at=self.created_at,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )
