"""
Domain DTOs (``contract_kernel.domain.dtos``).

Frozen records handed across the kernel boundary.  ORM models convert to
these via ``to_dto()``; nothing outside ``services/`` and ``selectors/``
ever sees a live ORM object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from contract_kernel.domain.approval import Approval
from contract_kernel.domain.status import ContractStatus


@dataclass(frozen=True)
class CounterpartyInfo:
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class NewContract:
    """Input for ``LifecycleService.create_contract``."""

    title: str
    content: str
    counterparty: CounterpartyInfo = field(default_factory=CounterpartyInfo)
    amount: Decimal | None = None
    currency: str = "USD"
    finance_review_requested: bool = False
    head_signoff_requested: bool = False
    end_date: date | None = None


@dataclass(frozen=True)
class Contract:
    id: UUID
    title: str
    status: ContractStatus
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    counterparty_name: str | None = None
    counterparty_email: str | None = None
    amount: Decimal | None = None
    currency: str = "USD"
    finance_review_requested: bool = False
    head_signoff_requested: bool = False
    requires_finance_review: bool = False
    requires_head_signoff: bool = False
    end_date: date | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    sent_at: datetime | None = None
    sent_recipients: tuple[str, ...] = ()
    countersigned_at: datetime | None = None
    signed_document_key: str | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None
    closed_reason: str | None = None
    row_version: int = 1
    latest_version_number: int = 0
    review_round: int = 0

    @property
    def counterparty(self) -> CounterpartyInfo:
        return CounterpartyInfo(self.counterparty_name, self.counterparty_email)


@dataclass(frozen=True)
class ContractVersion:
    id: UUID
    contract_id: UUID
    version_number: int
    content_snapshot: str
    created_by: UUID
    created_at: datetime
    snapshot_hash: str
    change_log: dict[str, Any] | None = None
    restored_from_version: int | None = None


@dataclass(frozen=True)
class AuditLogEntry:
    id: UUID
    contract_id: UUID
    seq: int
    actor_id: UUID
    action: str
    to_status: ContractStatus
    created_at: datetime
    hash: str
    from_status: ContractStatus | None = None
    comment: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    prev_hash: str | None = None


@dataclass(frozen=True)
class ContractDetail:
    """A contract with its approvals, as returned by the selector."""

    contract: Contract
    approvals: tuple[Approval, ...] = ()
