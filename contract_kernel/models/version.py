"""
Module: contract_kernel.models.version
Responsibility: ORM persistence for immutable contract content versions.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure value types in domain/.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener).
    - UNIQUE(contract_id, version_number): the database backstop for the
      locked-counter allocation in VersionLedger.
    - content_snapshot is stored verbatim; snapshot_hash is its SHA-256.

Failure modes:
    - IntegrityError on a duplicate (contract_id, version_number).
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import Base, UUIDString
from contract_kernel.domain.dtos import ContractVersion


class ContractVersionModel(Base):
    """Persistent content snapshot."""

    __tablename__ = "contract_versions"

    __table_args__ = (
        UniqueConstraint(
            "contract_id", "version_number",
            name="uq_contract_versions_contract_number",
        ),
        Index("ix_contract_versions_contract", "contract_id", "version_number"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    version_number: Mapped[int] = mapped_column(nullable=False)
    content_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    change_log: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    restored_from_version: Mapped[int | None] = mapped_column(nullable=True)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ContractVersion {self.contract_id} v{self.version_number}>"

    def to_dto(self) -> ContractVersion:
        return ContractVersion(
            id=self.id,
            contract_id=self.contract_id,
            version_number=self.version_number,
            content_snapshot=self.content_snapshot,
            created_by=self.created_by,
            created_at=self.created_at,
            snapshot_hash=self.snapshot_hash,
            change_log=self.change_log,
            restored_from_version=self.restored_from_version,
        )
