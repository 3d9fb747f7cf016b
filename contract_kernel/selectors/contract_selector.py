"""
ContractSelector -- read-side queries over the contract aggregate.

Returns frozen DTOs for contracts, approvals, versions and audit entries,
compares versions, and computes available actions.  All writes go through
LifecycleService.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select

from contract_kernel.domain.actions import Action, compute_available_actions
from contract_kernel.domain.approval import (
    Approval,
    ApprovalState,
    ApprovalTrack,
    EscalationLevel,
)
from contract_kernel.domain.diff import (
    DEFAULT_MAX_ALIGNMENT_CELLS,
    DEFAULT_SIMILARITY_THRESHOLD,
    VersionComparison,
    diff_snapshots,
    render_html_diff,
)
from contract_kernel.domain.dtos import (
    AuditLogEntry,
    Contract,
    ContractDetail,
    ContractVersion,
)
from contract_kernel.domain.status import TERMINAL_STATUSES, ContractStatus
from contract_kernel.exceptions import (
    ApprovalNotFoundError,
    ContractNotFoundError,
    VersionNotFoundError,
)
from contract_kernel.models.approval import ApprovalModel
from contract_kernel.models.audit_log import AuditLogEntryModel
from contract_kernel.models.contract import ContractModel
from contract_kernel.models.version import ContractVersionModel
from contract_kernel.selectors.base import BaseSelector


class ContractSelector(BaseSelector):
    """Read-only queries; the caller owns the session."""

    # Contracts

    def get_contract(self, contract_id: UUID) -> Contract:
        model = self.session.get(ContractModel, contract_id)
        if model is None:
            raise ContractNotFoundError(str(contract_id))
        return model.to_dto()

    def get_detail(self, contract_id: UUID) -> ContractDetail:
        return ContractDetail(
            contract=self.get_contract(contract_id),
            approvals=tuple(self.get_approvals(contract_id)),
        )

    def list_by_status(self, status: ContractStatus) -> list[Contract]:
        rows = self.session.execute(
            select(ContractModel)
            .where(ContractModel.status == status.value)
            .order_by(ContractModel.created_at, ContractModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def due_for_expiry(self, as_of: date) -> list[UUID]:
        """ACTIVE contracts whose end date has passed."""
        return list(
            self.session.execute(
                select(ContractModel.id)
                .where(ContractModel.status == ContractStatus.ACTIVE.value)
                .where(ContractModel.end_date.is_not(None))
                .where(ContractModel.end_date < as_of)
                .order_by(ContractModel.end_date, ContractModel.id)
            ).scalars().all()
        )

    def expiring_within(self, as_of: date, days: int) -> list[Contract]:
        """ACTIVE contracts whose end date falls in ``[as_of, as_of + days]``."""
        rows = self.session.execute(
            select(ContractModel)
            .where(ContractModel.status == ContractStatus.ACTIVE.value)
            .where(ContractModel.end_date >= as_of)
            .where(ContractModel.end_date <= as_of + timedelta(days=days))
            .order_by(ContractModel.end_date, ContractModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # Approvals

    def get_approvals(self, contract_id: UUID) -> list[Approval]:
        rows = self.session.execute(
            select(ApprovalModel)
            .where(ApprovalModel.contract_id == contract_id)
            .order_by(ApprovalModel.review_round, ApprovalModel.created_at)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_approval(self, approval_id: UUID) -> Approval:
        model = self.session.get(ApprovalModel, approval_id)
        if model is None:
            raise ApprovalNotFoundError(str(approval_id))
        return model.to_dto()

    def pending_approvals(
        self,
        track: ApprovalTrack,
        level: EscalationLevel | None = None,
    ) -> list[Approval]:
        """
        Reviewer work queue: PENDING approvals on ``track``, oldest first.

        Approvals still PENDING on a terminal contract are history and are
        excluded.
        """
        query = (
            select(ApprovalModel)
            .join(ContractModel, ContractModel.id == ApprovalModel.contract_id)
            .where(ApprovalModel.state == ApprovalState.PENDING.value)
            .where(ApprovalModel.track == track.value)
            .where(ContractModel.status.not_in(sorted(s.value for s in TERMINAL_STATUSES)))
        )
        if level is not None:
            query = query.where(ApprovalModel.level == level.value)
        rows = self.session.execute(
            query.order_by(ApprovalModel.created_at, ApprovalModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # Versions

    def _version_model(self, contract_id: UUID, version_id: UUID) -> ContractVersionModel:
        model = self.session.get(ContractVersionModel, version_id)
        if model is None or model.contract_id != contract_id:
            raise VersionNotFoundError(str(contract_id), str(version_id))
        return model

    def get_versions(self, contract_id: UUID) -> list[ContractVersion]:
        rows = self.session.execute(
            select(ContractVersionModel)
            .where(ContractVersionModel.contract_id == contract_id)
            .order_by(ContractVersionModel.version_number)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def get_version(self, contract_id: UUID, version_id: UUID) -> ContractVersion:
        return self._version_model(contract_id, version_id).to_dto()

    def latest_version(self, contract_id: UUID) -> ContractVersion | None:
        model = self.session.execute(
            select(ContractVersionModel)
            .where(ContractVersionModel.contract_id == contract_id)
            .order_by(ContractVersionModel.version_number.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def compare_versions(
        self,
        contract_id: UUID,
        from_version_id: UUID,
        to_version_id: UUID,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_alignment_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
    ) -> VersionComparison:
        """Diff any two versions of the same contract."""
        older = self._version_model(contract_id, from_version_id)
        newer = self._version_model(contract_id, to_version_id)
        return VersionComparison(
            from_version=older.version_number,
            to_version=newer.version_number,
            change_log=diff_snapshots(
                older.content_snapshot,
                newer.content_snapshot,
                similarity_threshold,
                max_alignment_cells,
            ),
            html_diff=render_html_diff(
                older.content_snapshot, newer.content_snapshot, max_alignment_cells,
            ),
        )

    # Audit

    def get_audit_trail(self, contract_id: UUID) -> list[AuditLogEntry]:
        rows = self.session.execute(
            select(AuditLogEntryModel)
            .where(AuditLogEntryModel.contract_id == contract_id)
            .order_by(AuditLogEntryModel.seq)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # Actions

    def available_actions(
        self, contract_id: UUID, actor_capabilities: Iterable[Action],
    ) -> frozenset[Action]:
        return compute_available_actions(
            self.get_contract(contract_id),
            self.get_approvals(contract_id),
            actor_capabilities,
        )
