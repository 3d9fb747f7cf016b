"""
LifecycleService -- the composition root callers talk to.

Responsibility:
    Exposes every contract lifecycle operation.  Owns the unit of work
    (per-contract lock, transaction, contract row lock), wires the
    orchestrator, version ledger and audit trail into it, translates lost
    races into ConcurrentModificationError, and dispatches notifications
    after commit.

Architecture position:
    Kernel > Services -- outermost kernel service.  Everything below it
    flushes; only this module commits (through ``session_scope``).

Invariants enforced:
    - One unit per mutating operation: lock registry -> session_scope ->
      SELECT ... FOR UPDATE -> guards -> writes -> commit.
    - Terminal check first, then validation, then permission, then writes.
    - Exactly one audit entry per status transition or version write, in
      the same transaction.
    - Notifications only after commit; a failing dispatcher never undoes
      the operation.

Failure modes:
    - Domain errors (InvalidTransitionError, InvalidApprovalStateError,
      ValidationError, UnauthorizedError, ...) roll the unit back and
      propagate unchanged.
    - A lost race becomes ConcurrentModificationError: StaleDataError from
      the row_version compare-and-swap, a unique-constraint collision, or a
      lock, busy, deadlock or serialization failure.  Any other database
      error propagates unchanged.  The kernel never retries.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from contract_kernel.domain.actions import Action, compute_available_actions
from contract_kernel.domain.approval import (
    Approval,
    ApprovalTrack,
    EscalationLevel,
    require_text,
)
from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.collaborators import (
    LifecycleNotification,
    NotificationDispatcher,
    PermissionChecker,
)
from contract_kernel.domain.diff import (
    DEFAULT_MAX_ALIGNMENT_CELLS,
    DEFAULT_SIMILARITY_THRESHOLD,
    VersionComparison,
)
from contract_kernel.domain.dtos import (
    AuditLogEntry,
    Contract,
    ContractVersion,
    NewContract,
)
from contract_kernel.domain.routing import ApprovalRoutingPolicy
from contract_kernel.domain.status import (
    ContractStatus,
    LifecycleEvent,
    StatusStateMachine,
    ensure_not_terminal,
)
from contract_kernel.db.engine import get_session_factory, session_scope
from contract_kernel.exceptions import ConcurrentModificationError, ValidationError
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.models.audit_log import AuditAction
from contract_kernel.models.contract import ContractModel
from contract_kernel.selectors.contract_selector import ContractSelector
from contract_kernel.services.approval_orchestrator import (
    ApprovalOrchestrator,
    LifecycleOutcome,
)
from contract_kernel.services.audit_trail import AuditTrail
from contract_kernel.services.authorization import ensure_permitted
from contract_kernel.services.contract_lock import ContractLockRegistry, lock_contract_row
from contract_kernel.services.notifications import LoggingNotificationDispatcher
from contract_kernel.services.version_ledger import VersionLedger

if TYPE_CHECKING:
    from contract_config.schema import LifecycleConfig

logger = get_logger("services.lifecycle")

# Actor recorded for scheduler-driven transitions (expiry).
SYSTEM_ACTOR_ID = UUID(int=0)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# PostgreSQL SQLSTATEs: serialization_failure, deadlock_detected,
# lock_not_available; unique_violation.
_LOCK_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
_UNIQUE_SQLSTATES = frozenset({"23505"})

# SQLite reports these through the message only.
_LOCK_MESSAGES = ("database is locked", "database table is locked")
_UNIQUE_MESSAGES = ("unique constraint failed",)


def is_lost_race(exc: Exception) -> bool:
    """True when ``exc`` means another writer got to the contract first."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        sqlstates, messages = _LOCK_SQLSTATES, _LOCK_MESSAGES
    elif isinstance(exc, IntegrityError):
        sqlstates, messages = _UNIQUE_SQLSTATES, _UNIQUE_MESSAGES
    else:
        return False
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate in sqlstates
    message = str(exc.orig).lower()
    return any(fragment in message for fragment in messages)


@dataclass
class _Unit:
    """Collaborators bound to one transaction and one locked contract."""

    session: Session
    contract: ContractModel
    audit: AuditTrail
    orchestrator: ApprovalOrchestrator
    ledger: VersionLedger


class LifecycleService:
    """
    Every mutating contract operation, each in its own unit of work.

    Args:
        session_factory: Creates one session per unit.  Defaults to the
            factory configured by ``init_engine_from_url``.
        permission_checker: Injected authorization collaborator.
        dispatcher: Post-commit notification sink.
        routing_policy: Track and head sign-off routing.
        clock: Time source for every timestamp the kernel writes.
        lock_registry: Shared per-contract lock table.  Services that share
            a database inside one process must share the registry.
        cancel_reason_min_length: Minimum trimmed cancellation reason.
        require_escalation_reason: Whether escalate needs a reason.
        similarity_threshold: Word similarity at which a replaced clause is
            reported as modified rather than removed and added.
        max_alignment_cells: Largest LCS table the diff engine builds while
            the contract lock is held.
    """

    def __init__(
        self,
        permission_checker: PermissionChecker,
        session_factory: sessionmaker[Session] | None = None,
        dispatcher: NotificationDispatcher | None = None,
        routing_policy: ApprovalRoutingPolicy | None = None,
        clock: Clock | None = None,
        lock_registry: ContractLockRegistry | None = None,
        cancel_reason_min_length: int = 10,
        require_escalation_reason: bool = True,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_alignment_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._permissions = permission_checker
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._policy = routing_policy or ApprovalRoutingPolicy()
        self._clock = clock or SystemClock()
        self._locks = lock_registry or ContractLockRegistry()
        self._machine = StatusStateMachine()
        self._cancel_reason_min_length = cancel_reason_min_length
        self._require_escalation_reason = require_escalation_reason
        self._similarity_threshold = similarity_threshold
        self._max_alignment_cells = max_alignment_cells

    @classmethod
    def from_config(
        cls,
        config: LifecycleConfig,
        permission_checker: PermissionChecker,
        **kwargs,
    ) -> LifecycleService:
        """Build a service from a compiled ``LifecycleConfig``."""
        return cls(
            permission_checker,
            routing_policy=config.routing_policy(),
            cancel_reason_min_length=config.validation.cancel_reason_min_length,
            require_escalation_reason=config.validation.require_escalation_reason,
            similarity_threshold=config.diff.modified_similarity_threshold,
            max_alignment_cells=config.diff.max_alignment_cells,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _collaborators(self, session: Session, contract: ContractModel) -> _Unit:
        audit = AuditTrail(session, self._clock)
        return _Unit(
            session=session,
            contract=contract,
            audit=audit,
            orchestrator=ApprovalOrchestrator(
                session,
                audit,
                self._permissions,
                routing_policy=self._policy,
                clock=self._clock,
                state_machine=self._machine,
                require_escalation_reason=self._require_escalation_reason,
            ),
            ledger=VersionLedger(
                session,
                self._clock,
                self._similarity_threshold,
                self._max_alignment_cells,
            ),
        )

    @contextmanager
    def _unit(self, contract_id: UUID, operation: str) -> Iterator[_Unit]:
        """
        Serialize on ``contract_id`` and run one transaction.

        The transaction commits when the block exits normally.
        """
        with LogContext.bind(contract_id=contract_id), self._locks.hold(contract_id):
            try:
                with session_scope(self._session_factory) as session:
                    contract = lock_contract_row(session, contract_id)
                    yield self._collaborators(session, contract)
            except (StaleDataError, IntegrityError, OperationalError) as exc:
                if not is_lost_race(exc):
                    raise
                logger.warning(
                    "concurrent_modification",
                    extra={
                        "contract_id": str(contract_id),
                        "operation": operation,
                        "error_type": type(exc).__name__,
                    },
                )
                raise ConcurrentModificationError(str(contract_id), operation) from exc

    def _dispatch(self, notification: LifecycleNotification) -> None:
        try:
            self._dispatcher.notify(notification)
        except Exception:
            logger.exception(
                "notification_dispatch_failed",
                extra={
                    "contract_id": str(notification.contract_id),
                    "action": notification.action,
                },
            )

    def _notify_outcome(
        self, outcome: LifecycleOutcome, actor_id: UUID,
    ) -> LifecycleOutcome:
        detail = {}
        if outcome.approval is not None:
            detail["approval_id"] = str(outcome.approval.id)
            detail["track"] = outcome.approval.track.value
        if outcome.opened:
            detail["opened"] = [
                {
                    "approval_id": str(a.id),
                    "track": a.track.value,
                    "level": a.level.value,
                }
                for a in outcome.opened
            ]
        self._dispatch(
            LifecycleNotification(
                contract_id=outcome.contract.id,
                action=outcome.audit_entry.action,
                actor_id=actor_id,
                to_status=outcome.to_status,
                from_status=outcome.from_status,
                detail=detail,
            )
        )
        return outcome

    def _transition(
        self,
        unit: _Unit,
        actor_id: UUID,
        event: LifecycleEvent,
        action: Action | None,
        audit_action: AuditAction,
        comment: str | None = None,
        payload: dict | None = None,
        **fields,
    ) -> LifecycleOutcome:
        """
        Apply a direct (non-approval) transition.

        ``fields`` are written onto the contract row alongside the status;
        a value of ``...`` stamps the field with the transition time.
        """
        contract = unit.contract
        from_status = contract.status_enum
        to_status = self._machine.next_status(from_status, event, contract.id)
        if action is not None:
            ensure_permitted(self._permissions, actor_id, action, contract.to_dto())

        now = self._clock.now()
        contract.status = to_status.value
        contract.updated_at = now
        for name, value in fields.items():
            setattr(contract, name, now if value is ... else value)
        unit.session.flush()

        entry = unit.audit.record(
            contract.id,
            actor_id,
            audit_action,
            from_status,
            to_status,
            comment=comment,
            payload=payload,
        )
        logger.info(
            "contract_transitioned",
            extra={
                "contract_id": str(contract.id),
                "event": event.value,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )
        return LifecycleOutcome(
            contract=contract.to_dto(),
            from_status=from_status,
            to_status=to_status,
            audit_entry=entry,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_contract(self, new: NewContract, actor_id: UUID) -> Contract:
        """Create a DRAFT contract with version 1 and a CREATED audit entry."""
        title = require_text("title", new.title)
        if new.amount is not None and new.amount < 0:
            raise ValidationError("amount", "must not be negative")

        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            contract = ContractModel(
                title=title,
                status=ContractStatus.DRAFT.value,
                counterparty_name=new.counterparty.name,
                counterparty_email=new.counterparty.email,
                amount=new.amount,
                currency=new.currency,
                finance_review_requested=new.finance_review_requested,
                head_signoff_requested=new.head_signoff_requested,
                end_date=new.end_date,
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            session.add(contract)
            session.flush()

            unit = self._collaborators(session, contract)
            version = unit.ledger.create_initial(contract, new.content, actor_id)
            entry = unit.audit.record(
                contract.id,
                actor_id,
                AuditAction.CREATED,
                None,
                ContractStatus.DRAFT,
                payload={
                    "title": title,
                    "amount": new.amount,
                    "currency": new.currency,
                    "version_id": str(version.id),
                    "version_number": version.version_number,
                },
            )
            created = contract.to_dto()

        logger.info(
            "contract_created",
            extra={"contract_id": str(created.id), "actor_id": str(actor_id)},
        )
        self._dispatch(
            LifecycleNotification(
                contract_id=created.id,
                action=entry.action,
                actor_id=actor_id,
                to_status=ContractStatus.DRAFT,
            )
        )
        return created

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def submit(self, contract_id: UUID, actor_id: UUID) -> LifecycleOutcome:
        with self._unit(contract_id, "submit") as unit:
            outcome = unit.orchestrator.submit(unit.contract, actor_id)
        return self._notify_outcome(outcome, actor_id)

    def resubmit(self, contract_id: UUID, actor_id: UUID) -> LifecycleOutcome:
        """Open a new review round on a REJECTED contract."""
        with self._unit(contract_id, "resubmit") as unit:
            outcome = unit.orchestrator.submit(unit.contract, actor_id, resubmit=True)
        return self._notify_outcome(outcome, actor_id)

    def return_to_draft(self, contract_id: UUID, actor_id: UUID) -> LifecycleOutcome:
        """REVISION_REQUESTED back to DRAFT for further editing."""
        with self._unit(contract_id, "return_to_draft") as unit:
            outcome = self._transition(
                unit,
                actor_id,
                LifecycleEvent.RETURN_TO_DRAFT,
                Action.REOPEN_DRAFT,
                AuditAction.RETURNED_TO_DRAFT,
            )
        return self._notify_outcome(outcome, actor_id)

    def _contract_of_approval(self, approval_id: UUID) -> UUID:
        # An approval never moves between contracts, so this read needs no lock.
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).get_approval(approval_id).contract_id

    def approve(
        self, approval_id: UUID, actor_id: UUID, comment: str | None = None,
    ) -> LifecycleOutcome:
        contract_id = self._contract_of_approval(approval_id)
        with self._unit(contract_id, "approve") as unit:
            outcome = unit.orchestrator.approve(unit.contract, approval_id, actor_id, comment)
        return self._notify_outcome(outcome, actor_id)

    def reject(
        self, approval_id: UUID, actor_id: UUID, comment: str | None,
    ) -> LifecycleOutcome:
        require_text("comment", comment)
        contract_id = self._contract_of_approval(approval_id)
        with self._unit(contract_id, "reject") as unit:
            outcome = unit.orchestrator.reject(unit.contract, approval_id, actor_id, comment)
        return self._notify_outcome(outcome, actor_id)

    def request_revision(
        self, approval_id: UUID, actor_id: UUID, comment: str | None,
    ) -> LifecycleOutcome:
        require_text("comment", comment)
        contract_id = self._contract_of_approval(approval_id)
        with self._unit(contract_id, "request_revision") as unit:
            outcome = unit.orchestrator.request_revision(
                unit.contract, approval_id, actor_id, comment,
            )
        return self._notify_outcome(outcome, actor_id)

    def escalate(
        self, contract_id: UUID, actor_id: UUID, reason: str | None = None,
    ) -> LifecycleOutcome:
        with self._unit(contract_id, "escalate") as unit:
            outcome = unit.orchestrator.escalate(unit.contract, actor_id, reason)
        return self._notify_outcome(outcome, actor_id)

    def return_to_manager(
        self, approval_id: UUID, actor_id: UUID, comment: str | None,
    ) -> LifecycleOutcome:
        require_text("comment", comment)
        contract_id = self._contract_of_approval(approval_id)
        with self._unit(contract_id, "return_to_manager") as unit:
            outcome = unit.orchestrator.return_to_manager(
                unit.contract, approval_id, actor_id, comment,
            )
        return self._notify_outcome(outcome, actor_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(
        self, contract_id: UUID, actor_id: UUID, reason: str | None,
    ) -> LifecycleOutcome:
        """
        Cancel from any non-terminal status.

        Raises:
            ValidationError: reason shorter than the configured minimum
                after trimming.
            InvalidTransitionError: the contract is terminal.
        """
        reason = require_text("reason", reason, self._cancel_reason_min_length)
        with self._unit(contract_id, "cancel") as unit:
            ensure_not_terminal(unit.contract.status_enum, LifecycleEvent.CANCEL, contract_id)
            outcome = self._transition(
                unit,
                actor_id,
                LifecycleEvent.CANCEL,
                Action.CANCEL,
                AuditAction.CANCELLED,
                comment=reason,
                payload={"reason": reason},
                closed_at=...,
                closed_reason=reason,
            )
        return self._notify_outcome(outcome, actor_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def send_to_counterparty(
        self, contract_id: UUID, actor_id: UUID, recipients: Iterable[str],
    ) -> LifecycleOutcome:
        """APPROVED -> SENT_TO_COUNTERPARTY.  Recipients are e-mail addresses."""
        cleaned = _validate_recipients(recipients)
        with self._unit(contract_id, "send_to_counterparty") as unit:
            outcome = self._transition(
                unit,
                actor_id,
                LifecycleEvent.SEND_TO_COUNTERPARTY,
                Action.SEND_TO_COUNTERPARTY,
                AuditAction.SENT_TO_COUNTERPARTY,
                payload={"recipients": cleaned},
                sent_at=...,
                sent_recipients=cleaned,
            )
        return self._notify_outcome(outcome, actor_id)

    def record_countersignature(
        self,
        contract_id: UUID,
        actor_id: UUID,
        signed_document_key: str | None = None,
    ) -> LifecycleOutcome:
        """SENT_TO_COUNTERPARTY -> COUNTERSIGNED.

        ``signed_document_key`` is an opaque storage reference for the
        executed copy; the kernel does not store files.
        """
        with self._unit(contract_id, "record_countersignature") as unit:
            outcome = self._transition(
                unit,
                actor_id,
                LifecycleEvent.COUNTERSIGN,
                Action.RECORD_COUNTERSIGNATURE,
                AuditAction.COUNTERSIGNED,
                payload={"signed_document_key": signed_document_key},
                countersigned_at=...,
                signed_document_key=signed_document_key,
            )
        return self._notify_outcome(outcome, actor_id)

    def activate(self, contract_id: UUID, actor_id: UUID) -> LifecycleOutcome:
        with self._unit(contract_id, "activate") as unit:
            outcome = self._transition(
                unit,
                actor_id,
                LifecycleEvent.ACTIVATE,
                Action.ACTIVATE,
                AuditAction.ACTIVATED,
                activated_at=...,
            )
        return self._notify_outcome(outcome, actor_id)

    def terminate(
        self, contract_id: UUID, actor_id: UUID, reason: str | None,
    ) -> LifecycleOutcome:
        """End an ACTIVE contract early."""
        reason = require_text("reason", reason)
        with self._unit(contract_id, "terminate") as unit:
            outcome = self._transition(
                unit,
                actor_id,
                LifecycleEvent.TERMINATE,
                Action.TERMINATE,
                AuditAction.TERMINATED,
                comment=reason,
                payload={"reason": reason},
                closed_at=...,
                closed_reason=reason,
            )
        return self._notify_outcome(outcome, actor_id)

    def expire_contracts(self, as_of: date) -> list[LifecycleOutcome]:
        """
        Move every ACTIVE contract whose end date is before ``as_of`` to
        EXPIRED, one unit of work per contract, as the system actor.
        """
        with session_scope(self._session_factory) as session:
            due = ContractSelector(session).due_for_expiry(as_of)

        expired: list[LifecycleOutcome] = []
        for contract_id in due:
            with self._unit(contract_id, "expire") as unit:
                contract = unit.contract
                # Re-checked under the lock; another worker may have moved it.
                if contract.status_enum != ContractStatus.ACTIVE or not (
                    contract.end_date is not None and contract.end_date < as_of
                ):
                    continue
                outcome = self._transition(
                    unit,
                    SYSTEM_ACTOR_ID,
                    LifecycleEvent.EXPIRE,
                    None,
                    AuditAction.EXPIRED,
                    payload={"as_of": as_of, "end_date": contract.end_date},
                    closed_at=...,
                )
            expired.append(self._notify_outcome(outcome, SYSTEM_ACTOR_ID))

        logger.info(
            "expiry_sweep_completed",
            extra={
                "as_of": as_of,
                "candidate_count": len(due),
                "expired_count": len(expired),
            },
        )
        return expired

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def _record_version(
        self,
        unit: _Unit,
        actor_id: UUID,
        version: ContractVersion,
        audit_action: AuditAction,
    ) -> AuditLogEntry:
        status = unit.contract.status_enum
        change_log = version.change_log or {}
        return unit.audit.record(
            unit.contract.id,
            actor_id,
            audit_action,
            status,
            status,
            payload={
                "version_id": str(version.id),
                "version_number": version.version_number,
                "restored_from_version": version.restored_from_version,
                "snapshot_hash": version.snapshot_hash,
                "summary": change_log.get("summary"),
            },
        )

    def create_version(
        self, contract_id: UUID, actor_id: UUID, new_snapshot: str,
    ) -> ContractVersion:
        with self._unit(contract_id, "create_version") as unit:
            contract = unit.contract
            ensure_not_terminal(contract.status_enum, Action.CREATE_VERSION, contract_id)
            ensure_permitted(
                self._permissions, actor_id, Action.CREATE_VERSION, contract.to_dto(),
            )
            version = unit.ledger.create_version(contract, new_snapshot, actor_id)
            entry = self._record_version(unit, actor_id, version, AuditAction.VERSION_CREATED)
            status = contract.status_enum

        self._dispatch(
            LifecycleNotification(
                contract_id=contract_id,
                action=entry.action,
                actor_id=actor_id,
                to_status=status,
                from_status=status,
                detail={"version_number": version.version_number},
            )
        )
        return version

    def restore_version(
        self, contract_id: UUID, actor_id: UUID, target_version_id: UUID,
    ) -> ContractVersion:
        """Append a copy of an earlier version as the newest version."""
        with self._unit(contract_id, "restore_version") as unit:
            contract = unit.contract
            ensure_not_terminal(contract.status_enum, Action.RESTORE_VERSION, contract_id)
            ensure_permitted(
                self._permissions, actor_id, Action.RESTORE_VERSION, contract.to_dto(),
            )
            version = unit.ledger.restore(contract, target_version_id, actor_id)
            entry = self._record_version(unit, actor_id, version, AuditAction.VERSION_RESTORED)
            status = contract.status_enum

        self._dispatch(
            LifecycleNotification(
                contract_id=contract_id,
                action=entry.action,
                actor_id=actor_id,
                to_status=status,
                from_status=status,
                detail={
                    "version_number": version.version_number,
                    "restored_from_version": version.restored_from_version,
                },
            )
        )
        return version

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: UUID) -> Contract:
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).get_contract(contract_id)

    def get_approvals(self, contract_id: UUID) -> list[Approval]:
        with session_scope(self._session_factory) as session:
            selector = ContractSelector(session)
            selector.get_contract(contract_id)
            return selector.get_approvals(contract_id)

    def pending_approvals(
        self, track: ApprovalTrack, level: EscalationLevel | None = None,
    ) -> list[Approval]:
        """PENDING approvals on ``track`` across open contracts, oldest first."""
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).pending_approvals(track, level)

    def get_versions(self, contract_id: UUID) -> list[ContractVersion]:
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).get_versions(contract_id)

    def get_version(self, contract_id: UUID, version_id: UUID) -> ContractVersion:
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).get_version(contract_id, version_id)

    def compare_versions(
        self, contract_id: UUID, from_version_id: UUID, to_version_id: UUID,
    ) -> VersionComparison:
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).compare_versions(
                contract_id,
                from_version_id,
                to_version_id,
                self._similarity_threshold,
                self._max_alignment_cells,
            )

    def get_audit_trail(self, contract_id: UUID) -> list[AuditLogEntry]:
        with session_scope(self._session_factory) as session:
            return ContractSelector(session).get_audit_trail(contract_id)

    def available_actions(self, contract_id: UUID, actor_id: UUID) -> frozenset[Action]:
        """Actions ``actor_id`` may attempt on the contract right now."""
        with session_scope(self._session_factory) as session:
            selector = ContractSelector(session)
            contract = selector.get_contract(contract_id)
            approvals = selector.get_approvals(contract_id)
        capabilities = {
            action for action in Action
            if self._permissions.can(actor_id, action, contract)
        }
        return compute_available_actions(contract, approvals, capabilities)

    def verify_audit_chain(self, contract_id: UUID) -> bool:
        """Recompute the contract's audit hash chain.

        Raises:
            AuditChainBrokenError: the stored chain was altered.
        """
        with session_scope(self._session_factory) as session:
            ContractSelector(session).get_contract(contract_id)
            return AuditTrail(session, self._clock).validate_chain(contract_id)


def _validate_recipients(recipients: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    for raw in recipients or ():
        address = (raw or "").strip()
        if not _EMAIL_PATTERN.match(address):
            raise ValidationError("recipients", f"invalid e-mail address: {raw!r}")
        if address.lower() not in (c.lower() for c in cleaned):
            cleaned.append(address)
    if not cleaned:
        raise ValidationError("recipients", "at least one recipient is required")
    return cleaned
