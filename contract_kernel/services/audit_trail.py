"""
AuditTrail -- append-only, per-contract hash-chained lifecycle log.

Responsibility:
    Writes one AuditLogEntry per status transition, orchestrator operation
    and version write, chaining each entry's hash to the previous entry of
    the same contract.  Also validates that chain and lists entries.

Architecture position:
    Kernel > Services -- imperative shell.  Leaf service: depends only on
    SequenceService, the audit model and the hashing utilities.

Invariants enforced:
    - seq is 1..N per contract, allocated from ``audit:<contract_id>``.
    - hash = H(contract_id | seq | action | from | to | payload_hash |
      prev_hash); the first entry of every contract has prev_hash None.
    - Flushes inside the caller's transaction and never commits: if the
      audit write fails, the whole unit of work fails.

Failure modes:
    - AuditChainBrokenError from validate_chain on any mismatch.
"""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.dtos import AuditLogEntry
from contract_kernel.domain.status import ContractStatus
from contract_kernel.exceptions import AuditChainBrokenError
from contract_kernel.logging_config import get_logger
from contract_kernel.models.audit_log import AuditAction, AuditLogEntryModel
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_entry,
    hash_payload,
)

logger = get_logger("services.audit_trail")


class AuditTrail:
    """
    Records and verifies the per-contract audit chain.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT take the contract lock; callers already hold it.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _last_hash(self, contract_id: UUID) -> str | None:
        return self._session.execute(
            select(AuditLogEntryModel.hash)
            .where(AuditLogEntryModel.contract_id == contract_id)
            .order_by(AuditLogEntryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        contract_id: UUID,
        actor_id: UUID,
        action: AuditAction | str,
        from_status: ContractStatus | None,
        to_status: ContractStatus,
        comment: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """
        Append one entry to the contract's chain.

        The payload is stored in its canonical JSON form, so the stored
        value is exactly what was hashed.
        """
        action_value = action.value if isinstance(action, AuditAction) else action
        seq = self._sequences.next_value(SequenceService.audit_sequence(contract_id))
        prev_hash = self._last_hash(contract_id)

        payload_data = json.loads(canonicalize_json(payload or {}))
        payload_hash = hash_payload(payload_data)
        from_value = from_status.value if from_status is not None else None

        entry_hash = hash_audit_entry(
            contract_id=str(contract_id),
            seq=seq,
            action=action_value,
            from_status=from_value,
            to_status=to_status.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        model = AuditLogEntryModel(
            contract_id=contract_id,
            seq=seq,
            actor_id=actor_id,
            action=action_value,
            from_status=from_value,
            to_status=to_status.value,
            comment=comment,
            payload=payload_data,
            payload_hash=payload_hash,
            created_at=self._clock.now(),
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "audit_entry_recorded",
            extra={
                "contract_id": str(contract_id),
                "seq": seq,
                "action": action_value,
                "from_status": from_value,
                "to_status": to_status.value,
            },
        )
        return model.to_dto()

    def validate_chain(self, contract_id: UUID) -> bool:
        """
        Recompute the contract's chain.

        Raises:
            AuditChainBrokenError: on the first entry whose payload hash,
                entry hash or prev_hash link does not match.
        """
        rows = self._session.execute(
            select(AuditLogEntryModel)
            .where(AuditLogEntryModel.contract_id == contract_id)
            .order_by(AuditLogEntryModel.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for row in rows:
            if row.prev_hash != expected_prev:
                self._broken(row, expected_prev or "None", row.prev_hash or "None")

            payload_hash = hash_payload(row.payload or {})
            if payload_hash != row.payload_hash:
                self._broken(row, payload_hash, row.payload_hash)

            expected_hash = hash_audit_entry(
                contract_id=str(row.contract_id),
                seq=row.seq,
                action=row.action,
                from_status=row.from_status,
                to_status=row.to_status,
                payload_hash=row.payload_hash,
                prev_hash=row.prev_hash,
            )
            if row.hash != expected_hash:
                self._broken(row, expected_hash, row.hash)
            expected_prev = row.hash

        logger.info(
            "audit_chain_valid",
            extra={"contract_id": str(contract_id), "entry_count": len(rows)},
        )
        return True

    def _broken(self, row: AuditLogEntryModel, expected: str, actual: str):
        logger.critical(
            "audit_chain_broken",
            extra={
                "contract_id": str(row.contract_id),
                "seq": row.seq,
                "audit_entry_id": str(row.id),
            },
        )
        raise AuditChainBrokenError(str(row.id), expected, actual)
