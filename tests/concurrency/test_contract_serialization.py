"""
Per-contract serialization under real thread parallelism.

Every mutating operation holds the contract's in-process lock for the
whole transaction and takes the contract row lock inside it.  These tests
start several workers behind a Barrier and check that the outcome is the
same as some serial order: no duplicate version or audit numbers, exactly
one winner for conflicting resolutions, and an intact audit chain.

Skip with: pytest -m "not slow_locks"
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from contract_kernel.domain.approval import ApprovalState, ApprovalTrack
from contract_kernel.domain.status import ContractStatus
from contract_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidApprovalStateError,
    InvalidTransitionError,
)
from contract_kernel.services.contract_lock import ContractLockRegistry
from contract_kernel.models.contract import ContractModel
from contract_kernel.services.contract_lock import lock_contract_row
from contract_kernel.services.lifecycle_service import LifecycleService, is_lost_race
from tests.conftest import (
    AUTHOR_ID,
    FINANCE_REVIEWER_ID,
    LEGAL_HEAD_ID,
    LEGAL_REVIEWER_ID,
)

pytestmark = pytest.mark.slow_locks

WORKERS = 6


def run_together(*calls):
    """Start every call at the same moment; return (results, errors)."""
    barrier = Barrier(len(calls))

    def _run(call):
        barrier.wait()
        return call()

    results, errors = [], []
    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(_run, call) for call in calls]
        for future in futures:
            try:
                results.append(future.result(timeout=60))
            except Exception as exc:
                errors.append(exc)
    return results, errors


class TestContractLockRegistry:

    def test_hold_is_exclusive_per_contract(self):
        registry = ContractLockRegistry()
        contract_id = uuid4()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def first():
            with registry.hold(contract_id):
                entered.set()
                release.wait(5)
                order.append("first")

        def second():
            entered.wait(5)
            with registry.hold(contract_id):
                order.append("second")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        entered.wait(5)
        assert registry.active_count() == 1
        release.set()
        t1.join(5)
        t2.join(5)

        assert order == ["first", "second"]
        assert registry.active_count() == 0

    def test_different_contracts_do_not_block(self):
        registry = ContractLockRegistry()
        with registry.hold(uuid4()):
            with registry.hold(uuid4()):
                assert registry.active_count() == 2
        assert registry.active_count() == 0


class TestConcurrentVersions:

    def test_no_duplicate_version_numbers(self, lifecycle, create_contract, lock_registry):
        contract = create_contract()

        results, errors = run_together(*[
            (lambda n=n: lifecycle.create_version(contract.id, AUTHOR_ID, f"<p>Draft {n}</p>"))
            for n in range(WORKERS)
        ])

        assert errors == []
        assert sorted(v.version_number for v in results) == list(range(2, WORKERS + 2))
        assert [v.version_number for v in lifecycle.get_versions(contract.id)] == list(
            range(1, WORKERS + 2)
        )
        assert lifecycle.get_contract(contract.id).latest_version_number == WORKERS + 1
        assert lock_registry.active_count() == 0

    def test_audit_sequence_stays_contiguous(self, lifecycle, create_contract):
        contract = create_contract()

        run_together(*[
            (lambda n=n: lifecycle.create_version(contract.id, AUTHOR_ID, f"<p>Edit {n}</p>"))
            for n in range(WORKERS)
        ])

        trail = lifecycle.get_audit_trail(contract.id)
        assert [e.seq for e in trail] == list(range(1, WORKERS + 2))
        assert lifecycle.verify_audit_chain(contract.id)

    def test_separate_service_instances(
        self,
        session_factory,
        permission_checker,
        deterministic_clock,
        create_contract,
    ):
        """Services without a shared registry still serialize on the database."""
        contract = create_contract()
        services = [
            LifecycleService(
                permission_checker,
                session_factory=session_factory,
                clock=deterministic_clock,
                lock_registry=ContractLockRegistry(),
            )
            for _ in range(3)
        ]

        results, errors = run_together(*[
            (lambda s=s, n=n: s.create_version(contract.id, AUTHOR_ID, f"<p>Worker {n}</p>"))
            for n, s in enumerate(services)
        ])

        # A worker may lose the race outright; it must never corrupt numbering.
        assert all(isinstance(e, ConcurrentModificationError) for e in errors)
        numbers = [v.version_number for v in services[0].get_versions(contract.id)]
        assert numbers == list(range(1, len(numbers) + 1))
        assert len(numbers) == 1 + len(results)
        assert services[0].verify_audit_chain(contract.id)


class TestConcurrentReview:

    def test_parallel_track_approvals(
        self, lifecycle, create_contract, pending_approval,
    ):
        contract = create_contract(amount=Decimal("250000.00"))
        lifecycle.submit(contract.id, AUTHOR_ID)
        legal = pending_approval(contract.id, ApprovalTrack.LEGAL)
        finance = pending_approval(contract.id, ApprovalTrack.FINANCE)

        _, errors = run_together(
            lambda: lifecycle.approve(legal.id, LEGAL_REVIEWER_ID),
            lambda: lifecycle.approve(finance.id, FINANCE_REVIEWER_ID),
        )

        assert errors == []
        assert lifecycle.get_contract(contract.id).status == ContractStatus.APPROVED
        assert {a.state for a in lifecycle.get_approvals(contract.id)} == {
            ApprovalState.APPROVED,
        }
        assert lifecycle.verify_audit_chain(contract.id)

    def test_same_approval_resolved_once(
        self, lifecycle, create_contract, pending_approval,
    ):
        contract = create_contract()
        lifecycle.submit(contract.id, AUTHOR_ID)
        legal = pending_approval(contract.id, ApprovalTrack.LEGAL)

        results, errors = run_together(
            lambda: lifecycle.approve(legal.id, LEGAL_REVIEWER_ID),
            lambda: lifecycle.reject(legal.id, LEGAL_HEAD_ID, "unacceptable terms"),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], (InvalidApprovalStateError, InvalidTransitionError))
        resolutions = [
            e for e in lifecycle.get_audit_trail(contract.id)
            if e.action in ("LEGAL_APPROVED", "LEGAL_REJECTED")
        ]
        assert len(resolutions) == 1

    def test_competing_cancellations(self, lifecycle, create_contract):
        contract = create_contract()

        results, errors = run_together(*[
            (lambda n=n: lifecycle.cancel(contract.id, AUTHOR_ID, f"cancelled by worker {n}"))
            for n in range(WORKERS)
        ])

        assert len(results) == 1
        assert len(errors) == WORKERS - 1
        assert all(isinstance(e, InvalidTransitionError) for e in errors)
        cancellations = [
            e for e in lifecycle.get_audit_trail(contract.id) if e.action == "CANCELLED"
        ]
        assert len(cancellations) == 1


class TestLostRaces:

    def test_database_errors_become_concurrent_modification(
        self, lifecycle, create_contract, monkeypatch, captured_logs,
    ):
        contract = create_contract()

        def _locked(session, contract_id):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(
            "contract_kernel.services.lifecycle_service.lock_contract_row", _locked,
        )

        with pytest.raises(ConcurrentModificationError) as exc_info:
            lifecycle.submit(contract.id, AUTHOR_ID)

        assert exc_info.value.code == "CONCURRENT_MODIFICATION"
        assert any(r["message"] == "concurrent_modification" for r in captured_logs())

    def test_stale_row_version_becomes_concurrent_modification(
        self, lifecycle, create_contract, monkeypatch,
    ):
        contract = create_contract()
        contracts = ContractModel.__table__

        def _lock_then_bump(session, contract_id):
            row = lock_contract_row(session, contract_id)
            # Another writer commits between our read and our write.
            session.execute(
                update(contracts)
                .where(contracts.c.id == contract_id)
                .values(row_version=row.row_version + 1)
            )
            return row

        monkeypatch.setattr(
            "contract_kernel.services.lifecycle_service.lock_contract_row", _lock_then_bump,
        )

        with pytest.raises(ConcurrentModificationError) as exc_info:
            lifecycle.submit(contract.id, AUTHOR_ID)

        assert isinstance(exc_info.value.__cause__, StaleDataError)
        assert lifecycle.get_contract(contract.id).status == ContractStatus.DRAFT
        assert [e.action for e in lifecycle.get_audit_trail(contract.id)] == ["CREATED"]

    def test_other_database_errors_propagate(self, lifecycle, create_contract, monkeypatch):
        contract = create_contract()

        def _missing_table(session, contract_id):
            raise OperationalError("SELECT ...", {}, Exception("no such table: contracts"))

        monkeypatch.setattr(
            "contract_kernel.services.lifecycle_service.lock_contract_row", _missing_table,
        )

        with pytest.raises(OperationalError):
            lifecycle.submit(contract.id, AUTHOR_ID)


class _DriverError(Exception):
    """Stands in for a driver exception carrying a SQLSTATE."""

    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestLostRaceClassification:

    @pytest.mark.parametrize(
        "exc",
        [
            StaleDataError("UPDATE statement on table 'contracts' expected to update 1 row(s)"),
            OperationalError("UPDATE", {}, Exception("database is locked")),
            OperationalError("UPDATE", {}, _DriverError("deadlock detected", "40P01")),
            OperationalError("UPDATE", {}, _DriverError("could not serialize", "40001")),
            OperationalError("SELECT", {}, _DriverError("could not obtain lock", "55P03")),
            IntegrityError(
                "INSERT", {},
                Exception("UNIQUE constraint failed: contract_versions.contract_id"),
            ),
            IntegrityError("INSERT", {}, _DriverError("duplicate key value", "23505")),
        ],
    )
    def test_lost_races(self, exc):
        assert is_lost_race(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            OperationalError("SELECT", {}, Exception("no such table: contracts")),
            OperationalError("SELECT", {}, _DriverError("terminating connection", "57P01")),
            IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: contracts.title")),
            IntegrityError("INSERT", {}, _DriverError("violates foreign key", "23503")),
            ValueError("not a database error"),
        ],
    )
    def test_not_lost_races(self, exc):
        assert not is_lost_race(exc)
