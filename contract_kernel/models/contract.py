"""
Module: contract_kernel.models.contract
Responsibility: ORM persistence for the contract aggregate root: status,
    counterparty metadata, routing inputs and their per-submission snapshot,
    execution timestamps, and the counters that serialize concurrent writers.
Architecture position: Kernel > Models.  May import from db/base.py and from
    the pure value types in domain/.  MUST NOT import from services/ or
    selectors/.

Invariants enforced:
    - status is always a ContractStatus member (check constraint generated
      from the enum).
    - row_version is SQLAlchemy's version_id_col: every UPDATE is a
      compare-and-swap on it, so a lost race raises StaleDataError instead
      of silently overwriting.
    - Contracts are never deleted (ORM listener in db/immutability.py).

Failure modes:
    - StaleDataError when another transaction updated the row first.
    - IntegrityError on an out-of-range status value.

Audit relevance:
    The contract row is the authoritative current status; every change to
    it is paired with an AuditLogEntry in the same transaction.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import Base, UUIDString
from contract_kernel.domain.dtos import Contract
from contract_kernel.domain.status import ContractStatus

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ContractStatus)


class ContractModel(Base):
    """
    Persistent contract.

    Guarantees:
        - Optimistic compare-and-swap on row_version for every UPDATE.
        - latest_version_number mirrors the highest ContractVersion number.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_contracts_valid_status",
        ),
        Index("ix_contracts_status", "status"),
        Index("ix_contracts_status_end_date", "status", "end_date"),
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ContractStatus.DRAFT.value,
    )

    counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    counterparty_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Routing inputs
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    finance_review_requested: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    head_signoff_requested: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    # Routing snapshot taken at the last submission
    requires_finance_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    requires_head_signoff: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    end_date: Mapped[date | None] = mapped_column(nullable=True)

    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_recipients: Mapped[list | None] = mapped_column(JSON, nullable=True)
    countersigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    signed_document_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Concurrency
    row_version: Mapped[int] = mapped_column(nullable=False)
    latest_version_number: Mapped[int] = mapped_column(nullable=False, default=0)
    review_round: Mapped[int] = mapped_column(nullable=False, default=0)

    __mapper_args__ = {"version_id_col": row_version}

    def __repr__(self) -> str:
        return f"<Contract {self.id} {self.title!r} status={self.status}>"

    @property
    def status_enum(self) -> ContractStatus:
        return ContractStatus(self.status)

    def to_dto(self) -> Contract:
        """Convert ORM model to frozen domain DTO."""
        return Contract(
            id=self.id,
            title=self.title,
            status=ContractStatus(self.status),
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            counterparty_name=self.counterparty_name,
            counterparty_email=self.counterparty_email,
            amount=self.amount,
            currency=self.currency,
            finance_review_requested=self.finance_review_requested,
            head_signoff_requested=self.head_signoff_requested,
            requires_finance_review=self.requires_finance_review,
            requires_head_signoff=self.requires_head_signoff,
            end_date=self.end_date,
            submitted_at=self.submitted_at,
            approved_at=self.approved_at,
            sent_at=self.sent_at,
            sent_recipients=tuple(self.sent_recipients or ()),
            countersigned_at=self.countersigned_at,
            signed_document_key=self.signed_document_key,
            activated_at=self.activated_at,
            closed_at=self.closed_at,
            closed_reason=self.closed_reason,
            row_version=self.row_version,
            latest_version_number=self.latest_version_number,
            review_round=self.review_round,
        )
