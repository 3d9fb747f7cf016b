"""
ApprovalOrchestrator -- parallel multi-track approval coordination.

Responsibility:
    Decides which tracks a submission needs, opens their approvals,
    resolves approvals, and folds the latest approval of every required
    track into one contract status through the transition table.

Architecture position:
    Kernel > Services -- imperative shell.  Depends on ApprovalTrack
    (domain/approval.py), the StatusStateMachine (domain/status.py) and
    AuditTrail.  Called only by LifecycleService, inside a unit of work
    that already holds the contract lock.

Invariants enforced:
    - Terminal check first: no approval mutation on a terminal contract.
    - Single pending approval per (contract, track) on every open.
    - Order independence: status after any approve is
      ``compute_review_status`` of the latest approvals, never an
      incremental patch.
    - Every operation writes exactly one audit entry, in the same flush
      scope as the approval and status writes.

Failure modes:
    - InvalidTransitionError: terminal contract or event not in the table.
    - InvalidApprovalStateError / ApprovalNotFoundError: approval not
      actionable or not on this contract.
    - UnauthorizedError: PermissionChecker denied the track/level action.
    - ValidationError: missing comment or escalation reason.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.domain import approval as track
from contract_kernel.domain.actions import Action, review_action
from contract_kernel.domain.approval import (
    FOLD_EVENTS,
    Approval,
    ApprovalState,
    ApprovalTrack,
    EscalationLevel,
    compute_review_status,
)
from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.collaborators import PermissionChecker
from contract_kernel.domain.dtos import AuditLogEntry, Contract
from contract_kernel.domain.routing import ApprovalRoutingPolicy, snapshot_tracks
from contract_kernel.domain.status import (
    ContractStatus,
    LifecycleEvent,
    StatusStateMachine,
    ensure_not_terminal,
)
from contract_kernel.exceptions import ApprovalNotFoundError
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.models.approval import ApprovalModel
from contract_kernel.models.audit_log import AuditAction
from contract_kernel.models.contract import ContractModel
from contract_kernel.services.audit_trail import AuditTrail
from contract_kernel.services.authorization import ensure_permitted

logger = get_logger("services.approval_orchestrator")


@dataclass(frozen=True)
class LifecycleOutcome:
    """What one lifecycle operation did."""

    contract: Contract
    from_status: ContractStatus
    to_status: ContractStatus
    audit_entry: AuditLogEntry
    approval: Approval | None = None
    opened: tuple[Approval, ...] = ()

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


_RESOLVE_OPERATION = {
    ApprovalState.APPROVED: "APPROVE",
    ApprovalState.REJECTED: "REJECT",
    ApprovalState.REVISION_REQUESTED: "REQUEST_REVISION",
}


def _resolution_action(approval: Approval, state: ApprovalState) -> AuditAction:
    prefix = approval.track.value
    if approval.track == ApprovalTrack.LEGAL and approval.is_head_level:
        prefix = "LEGAL_HEAD"
    return AuditAction(f"{prefix}_{state.value}")


class ApprovalOrchestrator:
    """
    Coordinates approval tracks for one unit of work.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT dispatch notifications.
    """

    def __init__(
        self,
        session: Session,
        audit: AuditTrail,
        permissions: PermissionChecker,
        routing_policy: ApprovalRoutingPolicy | None = None,
        clock: Clock | None = None,
        state_machine: StatusStateMachine | None = None,
        require_escalation_reason: bool = True,
    ):
        self._session = session
        self._audit = audit
        self._permissions = permissions
        self._policy = routing_policy or ApprovalRoutingPolicy()
        self._clock = clock or SystemClock()
        self._machine = state_machine or StatusStateMachine()
        self._require_escalation_reason = require_escalation_reason

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _approval_models(self, contract_id: UUID) -> list[ApprovalModel]:
        return list(
            self._session.execute(
                select(ApprovalModel)
                .where(ApprovalModel.contract_id == contract_id)
                .order_by(ApprovalModel.review_round, ApprovalModel.created_at)
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def approvals(self, contract_id: UUID) -> list[Approval]:
        return [model.to_dto() for model in self._approval_models(contract_id)]

    def _load_approval(self, contract: ContractModel, approval_id: UUID) -> ApprovalModel:
        model = self._session.execute(
            select(ApprovalModel)
            .where(ApprovalModel.id == approval_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None or model.contract_id != contract.id:
            raise ApprovalNotFoundError(str(approval_id))
        return model

    def _open(
        self,
        contract: ContractModel,
        approval_track: ApprovalTrack,
        existing: list[Approval],
        now: datetime,
        level: EscalationLevel = EscalationLevel.MANAGER,
    ) -> Approval:
        track.ensure_can_open(contract.id, approval_track, existing)
        opened = track.open_approval(
            contract.id, approval_track, contract.review_round, now, level,
        )
        self._session.add(ApprovalModel.from_dto(opened))
        existing.append(opened)
        logger.info(
            "approval_opened",
            extra={
                "contract_id": str(contract.id),
                "approval_id": str(opened.id),
                "track": approval_track.value,
                "level": level.value,
                "review_round": contract.review_round,
            },
        )
        return opened

    def _move(
        self, contract: ContractModel, event: LifecycleEvent, now: datetime,
    ) -> ContractStatus:
        target = self._machine.next_status(contract.status_enum, event, contract.id)
        contract.status = target.value
        contract.updated_at = now
        if target == ContractStatus.APPROVED:
            contract.approved_at = now
        return target

    def _authorize(self, actor_id: UUID, action: Action, contract: ContractModel) -> None:
        ensure_permitted(self._permissions, actor_id, action, contract.to_dto())

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self, contract: ContractModel, actor_id: UUID, resubmit: bool = False,
    ) -> LifecycleOutcome:
        """
        Open a review round.

        Opens a PENDING approval for every required track whose latest
        approval is resolved (or absent); an existing PENDING approval is
        kept, never duplicated.  Status becomes IN_REVIEW.
        """
        event = LifecycleEvent.RESUBMIT if resubmit else LifecycleEvent.SUBMIT
        action = Action.RESUBMIT if resubmit else Action.SUBMIT
        from_status = contract.status_enum
        if not resubmit:
            ensure_not_terminal(from_status, event, contract.id)
        self._machine.next_status(from_status, event, contract.id)
        self._authorize(actor_id, action, contract)

        now = self._clock.now()
        dto = contract.to_dto()
        contract.requires_finance_review = self._policy.requires_finance(dto)
        contract.requires_head_signoff = self._policy.head_signoff_required(dto)
        contract.review_round += 1

        existing = self.approvals(contract.id)
        required = snapshot_tracks(contract.requires_finance_review)
        opened = tuple(
            self._open(contract, t, existing, now)
            for t in required
            if track.pending_for_track(existing, t) is None
        )

        to_status = self._move(contract, event, now)
        contract.submitted_at = now
        self._session.flush()

        entry = self._audit.record(
            contract.id,
            actor_id,
            AuditAction.RESUBMITTED if resubmit else AuditAction.SUBMITTED,
            from_status,
            to_status,
            payload={
                "review_round": contract.review_round,
                "required_tracks": [t.value for t in required],
                "requires_head_signoff": contract.requires_head_signoff,
                "opened_approvals": [str(a.id) for a in opened],
            },
        )
        logger.info(
            "contract_submitted",
            extra={
                "contract_id": str(contract.id),
                "review_round": contract.review_round,
                "required_tracks": [t.value for t in required],
                "resubmit": resubmit,
            },
        )
        return LifecycleOutcome(
            contract=contract.to_dto(),
            from_status=from_status,
            to_status=to_status,
            audit_entry=entry,
            opened=opened,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def approve(
        self,
        contract: ContractModel,
        approval_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
    ) -> LifecycleOutcome:
        """Resolve one approval as APPROVED and re-fold the contract status."""
        return self._resolve(contract, approval_id, actor_id, comment, ApprovalState.APPROVED)

    def reject(
        self,
        contract: ContractModel,
        approval_id: UUID,
        actor_id: UUID,
        comment: str | None,
    ) -> LifecycleOutcome:
        """Resolve as REJECTED; the contract becomes REJECTED.

        Other pending approvals stay PENDING for audit visibility.
        """
        comment = track.require_text("comment", comment)
        return self._resolve(contract, approval_id, actor_id, comment, ApprovalState.REJECTED)

    def request_revision(
        self,
        contract: ContractModel,
        approval_id: UUID,
        actor_id: UUID,
        comment: str | None,
    ) -> LifecycleOutcome:
        comment = track.require_text("comment", comment)
        return self._resolve(
            contract, approval_id, actor_id, comment, ApprovalState.REVISION_REQUESTED,
        )

    def _resolve(
        self,
        contract: ContractModel,
        approval_id: UUID,
        actor_id: UUID,
        comment: str | None,
        state: ApprovalState,
    ) -> LifecycleOutcome:
        model = self._load_approval(contract, approval_id)
        from_status = contract.status_enum
        ensure_not_terminal(from_status, _RESOLVE_OPERATION[state], contract.id)

        current = model.to_dto()
        track.ensure_pending(current)
        self._authorize(actor_id, review_action(current.track, current.level), contract)

        with LogContext.bind(approval_id=approval_id):
            now = self._clock.now()
            resolved = track.resolve(current, state, actor_id, comment, now)
            model.apply(resolved)
            self._session.flush()

            approvals = self.approvals(contract.id)
            opened: tuple[Approval, ...] = ()

            if state == ApprovalState.REJECTED:
                event: LifecycleEvent | None = LifecycleEvent.REJECT
            elif state == ApprovalState.REVISION_REQUESTED:
                event = LifecycleEvent.REQUEST_REVISION
            else:
                target = compute_review_status(
                    approvals,
                    snapshot_tracks(contract.requires_finance_review),
                    contract.requires_head_signoff,
                )
                event = FOLD_EVENTS.get(target) if target != from_status else None
                if (
                    target == ContractStatus.PENDING_LEGAL_HEAD
                    and track.pending_for_track(approvals, ApprovalTrack.LEGAL) is None
                ):
                    # Mandatory head sign-off: hand LEGAL to the head.
                    opened = (
                        self._open(
                            contract, ApprovalTrack.LEGAL, approvals, now,
                            EscalationLevel.HEAD,
                        ),
                    )

            to_status = self._move(contract, event, now) if event is not None else from_status
            self._session.flush()

            entry = self._audit.record(
                contract.id,
                actor_id,
                _resolution_action(current, state),
                from_status,
                to_status,
                comment=comment,
                payload={
                    "approval_id": str(current.id),
                    "track": current.track.value,
                    "level": current.level.value,
                    "review_round": current.review_round,
                    "opened_approvals": [str(a.id) for a in opened],
                },
            )
            logger.info(
                "approval_resolved",
                extra={
                    "contract_id": str(contract.id),
                    "track": current.track.value,
                    "level": current.level.value,
                    "state": state.value,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )

        return LifecycleOutcome(
            contract=contract.to_dto(),
            from_status=from_status,
            to_status=to_status,
            audit_entry=entry,
            approval=resolved,
            opened=opened,
        )

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def escalate(
        self, contract: ContractModel, actor_id: UUID, reason: str | None,
    ) -> LifecycleOutcome:
        """Move the pending LEGAL approval to HEAD level without resolving it."""
        from_status = contract.status_enum
        ensure_not_terminal(from_status, LifecycleEvent.ESCALATE, contract.id)
        self._machine.next_status(from_status, LifecycleEvent.ESCALATE, contract.id)
        if self._require_escalation_reason:
            reason = track.require_text("reason", reason)

        models = {m.id: m for m in self._approval_models(contract.id)}
        legal = track.ensure_escalatable(m.to_dto() for m in models.values())
        self._authorize(actor_id, Action.ESCALATE, contract)

        now = self._clock.now()
        escalated = track.escalate(legal, actor_id, reason or "", now)
        models[legal.id].apply(escalated)
        to_status = self._move(contract, LifecycleEvent.ESCALATE, now)
        self._session.flush()

        entry = self._audit.record(
            contract.id,
            actor_id,
            AuditAction.ESCALATED,
            from_status,
            to_status,
            comment=reason,
            payload={"approval_id": str(legal.id), "review_round": legal.review_round},
        )
        logger.info(
            "approval_escalated",
            extra={"contract_id": str(contract.id), "approval_id": str(legal.id)},
        )
        return LifecycleOutcome(
            contract=contract.to_dto(),
            from_status=from_status,
            to_status=to_status,
            audit_entry=entry,
            approval=escalated,
        )

    def return_to_manager(
        self,
        contract: ContractModel,
        approval_id: UUID,
        actor_id: UUID,
        comment: str | None,
    ) -> LifecycleOutcome:
        """Hand a HEAD-level LEGAL approval back to MANAGER level."""
        comment = track.require_text("comment", comment)
        model = self._load_approval(contract, approval_id)
        from_status = contract.status_enum
        ensure_not_terminal(from_status, LifecycleEvent.RETURN_TO_MANAGER, contract.id)
        self._machine.next_status(from_status, LifecycleEvent.RETURN_TO_MANAGER, contract.id)

        current = model.to_dto()
        returned = track.return_to_manager(current)
        self._authorize(actor_id, Action.RETURN_TO_MANAGER, contract)

        now = self._clock.now()
        model.apply(returned)
        to_status = self._move(contract, LifecycleEvent.RETURN_TO_MANAGER, now)
        self._session.flush()

        entry = self._audit.record(
            contract.id,
            actor_id,
            AuditAction.RETURNED_TO_MANAGER,
            from_status,
            to_status,
            comment=comment,
            payload={"approval_id": str(current.id), "review_round": current.review_round},
        )
        logger.info(
            "approval_returned_to_manager",
            extra={"contract_id": str(contract.id), "approval_id": str(current.id)},
        )
        return LifecycleOutcome(
            contract=contract.to_dto(),
            from_status=from_status,
            to_status=to_status,
            audit_entry=entry,
            approval=returned,
        )
