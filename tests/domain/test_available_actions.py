"""Tests for compute_available_actions."""

from datetime import datetime, timezone
from uuid import uuid4

from contract_kernel.domain.actions import (
    Action,
    compute_available_actions,
    required_capability,
    review_action,
    structurally_available,
)
from contract_kernel.domain.approval import (
    ApprovalState,
    ApprovalTrack,
    EscalationLevel,
    escalate,
    open_approval,
    resolve,
)
from contract_kernel.domain.dtos import Contract
from contract_kernel.domain.status import ContractStatus

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)
ACTOR = uuid4()


def _contract(status):
    return Contract(
        id=uuid4(), title="Lease", status=status,
        created_by=ACTOR, created_at=NOW, updated_at=NOW,
    )


def _legal(contract, level=EscalationLevel.MANAGER):
    return open_approval(contract.id, ApprovalTrack.LEGAL, 1, NOW, level)


def _finance(contract):
    return open_approval(contract.id, ApprovalTrack.FINANCE, 1, NOW)


EVERYTHING = frozenset(Action)


class TestStructuralAvailability:

    def test_draft(self):
        assert structurally_available(ContractStatus.DRAFT, []) == {
            Action.SUBMIT,
            Action.CANCEL,
            Action.CREATE_VERSION,
            Action.RESTORE_VERSION,
        }

    def test_in_review_with_both_tracks_pending(self):
        contract = _contract(ContractStatus.IN_REVIEW)
        available = structurally_available(
            contract.status, [_legal(contract), _finance(contract)],
        )
        assert {Action.REVIEW_LEGAL, Action.REVIEW_FINANCE, Action.ESCALATE} <= available
        assert Action.REVIEW_LEGAL_HEAD not in available
        assert Action.SUBMIT not in available

    def test_pending_legal_head(self):
        contract = _contract(ContractStatus.PENDING_LEGAL_HEAD)
        escalated = escalate(_legal(contract), ACTOR, "x", NOW)
        available = structurally_available(contract.status, [escalated])

        assert Action.REVIEW_LEGAL_HEAD in available
        assert Action.RETURN_TO_MANAGER in available
        assert Action.REVIEW_LEGAL not in available
        assert Action.ESCALATE not in available

    def test_finance_in_progress_offers_no_legal_actions(self):
        contract = _contract(ContractStatus.FINANCE_REVIEW_IN_PROGRESS)
        approved = resolve(_legal(contract), ApprovalState.APPROVED, ACTOR, None, NOW)
        available = structurally_available(contract.status, [approved, _finance(contract)])

        assert Action.REVIEW_FINANCE in available
        assert Action.REVIEW_LEGAL not in available
        assert Action.ESCALATE not in available

    def test_rejected_only_resubmits(self):
        contract = _contract(ContractStatus.REJECTED)
        # The untouched finance approval stays pending but is not actionable.
        assert structurally_available(contract.status, [_finance(contract)]) == {Action.RESUBMIT}

    def test_execution_path(self):
        assert structurally_available(ContractStatus.APPROVED, []) == {
            Action.SEND_TO_COUNTERPARTY, Action.CANCEL,
            Action.CREATE_VERSION, Action.RESTORE_VERSION,
        }
        assert Action.RECORD_COUNTERSIGNATURE in structurally_available(
            ContractStatus.SENT_TO_COUNTERPARTY, [],
        )
        assert structurally_available(ContractStatus.ACTIVE, []) == {Action.TERMINATE}

    def test_final_statuses_offer_nothing(self):
        for status in (ContractStatus.CANCELLED, ContractStatus.EXPIRED, ContractStatus.TERMINATED):
            assert structurally_available(status, []) == frozenset()


class TestPermissionFiltering:

    def test_capabilities_filter_structural_actions(self):
        contract = _contract(ContractStatus.IN_REVIEW)
        approvals = [_legal(contract), _finance(contract)]

        assert compute_available_actions(
            contract, approvals, {Action.REVIEW_FINANCE},
        ) == {Action.REVIEW_FINANCE}
        assert compute_available_actions(contract, approvals, set()) == frozenset()

    def test_return_to_manager_needs_head_capability(self):
        contract = _contract(ContractStatus.PENDING_LEGAL_HEAD)
        approvals = [escalate(_legal(contract), ACTOR, "x", NOW)]

        assert required_capability(Action.RETURN_TO_MANAGER) == Action.REVIEW_LEGAL_HEAD
        assert compute_available_actions(
            contract, approvals, {Action.REVIEW_LEGAL_HEAD},
        ) == {Action.REVIEW_LEGAL_HEAD, Action.RETURN_TO_MANAGER}
        assert Action.RETURN_TO_MANAGER not in compute_available_actions(
            contract, approvals, {Action.RETURN_TO_MANAGER},
        )

    def test_review_action_by_track_and_level(self):
        assert review_action(ApprovalTrack.FINANCE, EscalationLevel.MANAGER) == Action.REVIEW_FINANCE
        assert review_action(ApprovalTrack.LEGAL, EscalationLevel.MANAGER) == Action.REVIEW_LEGAL
        assert review_action(ApprovalTrack.LEGAL, EscalationLevel.HEAD) == Action.REVIEW_LEGAL_HEAD

    def test_everything_granted_equals_structural(self):
        contract = _contract(ContractStatus.COUNTERSIGNED)
        assert compute_available_actions(contract, [], EVERYTHING) == structurally_available(
            contract.status, [],
        )
