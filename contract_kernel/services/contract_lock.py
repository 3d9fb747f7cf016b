"""
Per-contract serialization.

Two layers, taken in this order by every mutating operation:

1. ``ContractLockRegistry`` -- an in-process mutual-exclusion token per
   contract id, held around the whole unit of work (transaction included).
2. ``lock_contract_row`` -- ``SELECT ... FOR UPDATE`` on the contract row
   inside the transaction, which serializes workers in other processes on
   PostgreSQL.

The contract's ``row_version`` compare-and-swap is the final backstop.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.exceptions import ContractNotFoundError
from contract_kernel.logging_config import get_logger
from contract_kernel.models.contract import ContractModel

logger = get_logger("services.contract_lock")


class ContractLockRegistry:
    """Reference-counted ``threading.Lock`` per contract id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[UUID, threading.Lock] = {}
        self._holders: dict[UUID, int] = {}

    @contextmanager
    def hold(self, contract_id: UUID) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(contract_id, threading.Lock())
            self._holders[contract_id] = self._holders.get(contract_id, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                remaining = self._holders[contract_id] - 1
                if remaining:
                    self._holders[contract_id] = remaining
                else:
                    del self._holders[contract_id]
                    del self._locks[contract_id]

    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)


def lock_contract_row(session: Session, contract_id: UUID) -> ContractModel:
    """Load the contract row with a row lock, refreshing any cached copy."""
    contract = session.execute(
        select(ContractModel)
        .where(ContractModel.id == contract_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if contract is None:
        raise ContractNotFoundError(str(contract_id))
    logger.debug("contract_row_locked", extra={"contract_id": str(contract_id)})
    return contract
