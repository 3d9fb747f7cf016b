"""
VersionLedger -- immutable, monotonically numbered content snapshots.

Responsibility:
    Appends contract versions with a machine-generated changelog computed
    by the structural diff engine, restores earlier versions by appending a
    byte-equal copy.  Version reads live in ContractSelector.

Architecture position:
    Kernel > Services -- imperative shell.  Depends on the diff engine
    (domain/diff.py) and SequenceService only.  Audit entries for version
    writes are recorded by the caller (LifecycleService).

Invariants enforced:
    - Version numbers are 1..N per contract with no gaps or duplicates:
      allocated from the ``version:<contract_id>`` counter row under lock,
      backed by UNIQUE(contract_id, version_number).
    - Snapshots are stored verbatim; restore never alters earlier versions.
    - Terminal contracts accept no new versions.

Failure modes:
    - InvalidTransitionError for a terminal contract.
    - VersionNotFoundError when a version id does not belong to the contract.
    - IntegrityError on a version-number collision (translated to
      ConcurrentModificationError by LifecycleService).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.domain.actions import Action
from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.diff import (
    DEFAULT_MAX_ALIGNMENT_CELLS,
    DEFAULT_SIMILARITY_THRESHOLD,
    ChangeLog,
    diff_snapshots,
)
from contract_kernel.domain.dtos import ContractVersion
from contract_kernel.domain.status import ensure_not_terminal
from contract_kernel.exceptions import VersionNotFoundError
from contract_kernel.logging_config import get_logger
from contract_kernel.models.contract import ContractModel
from contract_kernel.models.version import ContractVersionModel
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.utils.hashing import hash_snapshot

logger = get_logger("services.version_ledger")


class VersionLedger:
    """
    Append-only version store for one session.

    Contract:
        Callers pass the contract row already locked by the unit of work.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT write audit entries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_alignment_cells: int = DEFAULT_MAX_ALIGNMENT_CELLS,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._similarity_threshold = similarity_threshold
        self._max_alignment_cells = max_alignment_cells
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_initial(
        self, contract: ContractModel, snapshot: str, actor_id: UUID,
    ) -> ContractVersion:
        """Version 1.  No changelog."""
        return self._append(contract, snapshot, actor_id, change_log=None)

    def create_version(
        self, contract: ContractModel, new_snapshot: str, actor_id: UUID,
    ) -> ContractVersion:
        """
        Append a version diffed against the current highest version.

        Postconditions:
            - The new version number is latest_version_number + 1.
            - change_log is None only when this is version 1.
        """
        ensure_not_terminal(contract.status_enum, Action.CREATE_VERSION, contract.id)
        previous = self._latest_model(contract.id)
        if previous is None:
            return self._append(contract, new_snapshot, actor_id, change_log=None)

        change_log = diff_snapshots(
            previous.content_snapshot,
            new_snapshot,
            self._similarity_threshold,
            self._max_alignment_cells,
        )
        return self._append(contract, new_snapshot, actor_id, change_log)

    def restore(
        self, contract: ContractModel, target_version_id: UUID, actor_id: UUID,
    ) -> ContractVersion:
        """
        Append a new version whose snapshot is byte-equal to the target's.
        """
        ensure_not_terminal(contract.status_enum, Action.RESTORE_VERSION, contract.id)
        target = self._get_model(contract.id, target_version_id)
        previous = self._latest_model(contract.id)

        change_log = diff_snapshots(
            previous.content_snapshot if previous is not None else "",
            target.content_snapshot,
            self._similarity_threshold,
            self._max_alignment_cells,
        ).with_note(f"Restored from version {target.version_number}")

        return self._append(
            contract,
            target.content_snapshot,
            actor_id,
            change_log,
            restored_from_version=target.version_number,
        )

    def _append(
        self,
        contract: ContractModel,
        snapshot: str,
        actor_id: UUID,
        change_log: ChangeLog | None,
        restored_from_version: int | None = None,
    ) -> ContractVersion:
        number = self._sequences.next_value(SequenceService.version_sequence(contract.id))
        now = self._clock.now()

        model = ContractVersionModel(
            contract_id=contract.id,
            version_number=number,
            content_snapshot=snapshot,
            change_log=change_log.to_dict() if change_log is not None else None,
            restored_from_version=restored_from_version,
            snapshot_hash=hash_snapshot(snapshot),
            created_by=actor_id,
            created_at=now,
        )
        self._session.add(model)
        contract.latest_version_number = number
        contract.updated_at = now
        self._session.flush()

        logger.info(
            "version_created",
            extra={
                "contract_id": str(contract.id),
                "version_number": number,
                "restored_from_version": restored_from_version,
                "summary": change_log.summary if change_log is not None else None,
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _latest_model(self, contract_id: UUID) -> ContractVersionModel | None:
        return self._session.execute(
            select(ContractVersionModel)
            .where(ContractVersionModel.contract_id == contract_id)
            .order_by(ContractVersionModel.version_number.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _get_model(self, contract_id: UUID, version_id: UUID) -> ContractVersionModel:
        model = self._session.get(ContractVersionModel, version_id)
        if model is None or model.contract_id != contract_id:
            raise VersionNotFoundError(str(contract_id), str(version_id))
        return model

    def latest(self, contract_id: UUID) -> ContractVersion | None:
        model = self._latest_model(contract_id)
        return model.to_dto() if model is not None else None
