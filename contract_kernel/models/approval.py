"""
Module: contract_kernel.models.approval
Responsibility: ORM persistence for approval records, one per reviewer
    decision slot on a track.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure value types in domain/.

Invariants enforced:
    - At most one PENDING approval per (contract_id, track): partial unique
      index on both SQLite and PostgreSQL, backing the domain check in
      ApprovalTrack.
    - Valid enum values: check constraints on track, state and level.
    - A resolved approval is immutable and no approval is ever deleted
      (ORM listeners in db/immutability.py).

Failure modes:
    - IntegrityError on a second PENDING approval for the same track.
    - ImmutabilityViolationError on UPDATE of a resolved approval.

Audit relevance:
    Approvals are the reviewer-level record behind every status decision;
    superseded rounds stay in the table as history.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import Base, UUIDString
from contract_kernel.domain.approval import (
    Approval,
    ApprovalState,
    ApprovalTrack,
    EscalationLevel,
)

_PENDING = text("state = 'PENDING'")


class ApprovalModel(Base):
    """Persistent approval record."""

    __tablename__ = "contract_approvals"

    __table_args__ = (
        CheckConstraint(
            "track IN ('LEGAL', 'FINANCE')",
            name="ck_contract_approvals_valid_track",
        ),
        CheckConstraint(
            "state IN ('PENDING', 'APPROVED', 'REJECTED', 'REVISION_REQUESTED')",
            name="ck_contract_approvals_valid_state",
        ),
        CheckConstraint(
            "level IN ('MANAGER', 'HEAD')",
            name="ck_contract_approvals_valid_level",
        ),
        Index(
            "uq_contract_approvals_one_pending_per_track",
            "contract_id", "track",
            unique=True,
            sqlite_where=_PENDING,
            postgresql_where=_PENDING,
        ),
        Index("ix_contract_approvals_contract_round", "contract_id", "review_round"),
    )

    # Nothing on a resolved approval may change.
    MUTABLE_AFTER_RESOLUTION: frozenset[str] = frozenset()

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    track: Mapped[str] = mapped_column(String(20), nullable=False)
    state: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ApprovalState.PENDING.value,
    )
    level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EscalationLevel.MANAGER.value,
    )
    review_round: Mapped[int] = mapped_column(nullable=False)

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    escalated_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Approval {self.id} {self.track}/{self.level} "
            f"round={self.review_round} state={self.state}>"
        )

    def to_dto(self) -> Approval:
        return Approval(
            id=self.id,
            contract_id=self.contract_id,
            track=ApprovalTrack(self.track),
            state=ApprovalState(self.state),
            level=EscalationLevel(self.level),
            review_round=self.review_round,
            created_at=self.created_at,
            actor_id=self.actor_id,
            comment=self.comment,
            resolved_at=self.resolved_at,
            escalated_by=self.escalated_by,
            escalated_at=self.escalated_at,
            escalation_reason=self.escalation_reason,
        )

    @classmethod
    def from_dto(cls, dto: Approval) -> ApprovalModel:
        model = cls(id=dto.id, contract_id=dto.contract_id)
        model.apply(dto)
        return model

    def apply(self, dto: Approval) -> None:
        """Copy the mutable fields of ``dto`` onto this row."""
        self.track = dto.track.value
        self.state = dto.state.value
        self.level = dto.level.value
        self.review_round = dto.review_round
        self.actor_id = dto.actor_id
        self.comment = dto.comment
        self.created_at = dto.created_at
        self.resolved_at = dto.resolved_at
        self.escalated_by = dto.escalated_by
        self.escalated_at = dto.escalated_at
        self.escalation_reason = dto.escalation_reason
