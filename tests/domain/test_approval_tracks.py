"""
Tests for approval track validators and the review-status fold.

Pure tests: no database.  The order-independence property is checked with
Hypothesis over arbitrary resolution orders and outcomes.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from contract_kernel.domain.approval import (
    FOLD_EVENTS,
    ApprovalState,
    ApprovalTrack,
    EscalationLevel,
    compute_review_status,
    ensure_can_open,
    ensure_escalatable,
    ensure_pending,
    escalate,
    head_signoff_given,
    latest_by_track,
    open_approval,
    require_text,
    resolve,
    return_to_manager,
)
from contract_kernel.domain.status import ContractStatus, can_transition
from contract_kernel.exceptions import (
    DuplicatePendingApprovalError,
    InvalidApprovalStateError,
    ValidationError,
)

T0 = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
CONTRACT_ID = uuid4()
ACTOR = uuid4()

LEGAL = ApprovalTrack.LEGAL
FINANCE = ApprovalTrack.FINANCE
BOTH = (LEGAL, FINANCE)


def _open(track, review_round=1, at=T0, level=EscalationLevel.MANAGER):
    return open_approval(CONTRACT_ID, track, review_round, at, level)


def _resolved(track, state, review_round=1, at=T0 + timedelta(minutes=5)):
    return resolve(_open(track, review_round), state, ACTOR, "ok", at)


# =============================================================================
# Validators
# =============================================================================


class TestValidators:

    def test_ensure_can_open_rejects_second_pending(self):
        existing = [_open(LEGAL)]
        with pytest.raises(DuplicatePendingApprovalError) as exc_info:
            ensure_can_open(CONTRACT_ID, LEGAL, existing)

        assert exc_info.value.code == "DUPLICATE_PENDING_APPROVAL"
        assert exc_info.value.approval_id == str(existing[0].id)
        assert exc_info.value.track == "LEGAL"

    def test_ensure_can_open_allows_other_track(self):
        ensure_can_open(CONTRACT_ID, FINANCE, [_open(LEGAL)])

    def test_ensure_can_open_allows_after_resolution(self):
        ensure_can_open(CONTRACT_ID, LEGAL, [_resolved(LEGAL, ApprovalState.REJECTED)])

    def test_resolving_twice_raises(self):
        approved = _resolved(LEGAL, ApprovalState.APPROVED)
        with pytest.raises(InvalidApprovalStateError) as exc_info:
            resolve(approved, ApprovalState.APPROVED, ACTOR, None, T0)
        assert exc_info.value.state == "APPROVED"

    def test_ensure_pending(self):
        ensure_pending(_open(FINANCE))
        with pytest.raises(InvalidApprovalStateError):
            ensure_pending(_resolved(FINANCE, ApprovalState.REVISION_REQUESTED))

    def test_escalate_keeps_approval_pending(self):
        pending = _open(LEGAL)
        escalated = escalate(pending, ACTOR, "above my authority", T0)

        assert escalated.is_pending
        assert not escalated.is_resolved
        assert escalated.level == EscalationLevel.HEAD
        assert escalated.escalation_reason == "above my authority"
        assert pending.level == EscalationLevel.MANAGER

    def test_ensure_escalatable_requires_manager_level_pending_legal(self):
        legal = _open(LEGAL)
        assert ensure_escalatable([legal, _open(FINANCE)]) == legal

        with pytest.raises(InvalidApprovalStateError):
            ensure_escalatable([_open(FINANCE)])
        with pytest.raises(InvalidApprovalStateError):
            ensure_escalatable([_resolved(LEGAL, ApprovalState.APPROVED)])
        with pytest.raises(InvalidApprovalStateError, match="HEAD"):
            ensure_escalatable([escalate(legal, ACTOR, "x", T0)])

    def test_return_to_manager_requires_head_level(self):
        legal = _open(LEGAL)
        with pytest.raises(InvalidApprovalStateError):
            return_to_manager(legal)

        returned = return_to_manager(escalate(legal, ACTOR, "x", T0))
        assert returned.level == EscalationLevel.MANAGER
        assert returned.is_pending

    @pytest.mark.parametrize("value", [None, "", "   \n"])
    def test_require_text_rejects_blank(self, value):
        with pytest.raises(ValidationError) as exc_info:
            require_text("comment", value)
        assert exc_info.value.field == "comment"

    def test_require_text_min_length_counts_trimmed(self):
        assert require_text("reason", "  ten chars!  ", 10) == "ten chars!"
        with pytest.raises(ValidationError, match="at least 10"):
            require_text("reason", "   short    ", 10)


# =============================================================================
# Latest-by-track
# =============================================================================


class TestLatestByTrack:

    def test_later_round_supersedes(self):
        old = _resolved(LEGAL, ApprovalState.REVISION_REQUESTED, review_round=1)
        new = _open(LEGAL, review_round=2, at=T0 + timedelta(hours=1))
        assert latest_by_track([new, old])[LEGAL] == new

    def test_head_level_supersedes_manager_in_same_round(self):
        manager = _resolved(LEGAL, ApprovalState.APPROVED)
        head = _open(LEGAL, level=EscalationLevel.HEAD)
        assert latest_by_track([head, manager])[LEGAL] == head

    def test_head_signoff_given(self):
        head = _open(LEGAL, level=EscalationLevel.HEAD)
        assert not head_signoff_given([head])
        signed = resolve(head, ApprovalState.APPROVED, ACTOR, None, T0 + timedelta(hours=2))
        assert head_signoff_given([_resolved(LEGAL, ApprovalState.APPROVED), signed])


# =============================================================================
# Fold
# =============================================================================


class TestComputeReviewStatus:

    def test_nothing_resolved_is_in_review(self):
        assert compute_review_status([_open(LEGAL), _open(FINANCE)], BOTH) == ContractStatus.IN_REVIEW

    def test_missing_track_counts_as_pending(self):
        assert compute_review_status([], (LEGAL,)) == ContractStatus.IN_REVIEW

    def test_legal_cleared_leaves_finance(self):
        approvals = [_resolved(LEGAL, ApprovalState.APPROVED), _open(FINANCE)]
        assert compute_review_status(approvals, BOTH) == ContractStatus.FINANCE_REVIEW_IN_PROGRESS

    def test_finance_cleared_leaves_legal(self):
        approvals = [_open(LEGAL), _resolved(FINANCE, ApprovalState.APPROVED)]
        assert compute_review_status(approvals, BOTH) == ContractStatus.LEGAL_REVIEW_IN_PROGRESS

    def test_all_approved(self):
        approvals = [
            _resolved(LEGAL, ApprovalState.APPROVED),
            _resolved(FINANCE, ApprovalState.APPROVED),
        ]
        assert compute_review_status(approvals, BOTH) == ContractStatus.APPROVED

    def test_rejection_wins_over_everything(self):
        approvals = [
            _resolved(LEGAL, ApprovalState.REVISION_REQUESTED),
            _resolved(FINANCE, ApprovalState.REJECTED),
        ]
        assert compute_review_status(approvals, BOTH) == ContractStatus.REJECTED

    def test_revision_request_wins_over_pending(self):
        approvals = [_open(LEGAL), _resolved(FINANCE, ApprovalState.REVISION_REQUESTED)]
        assert compute_review_status(approvals, BOTH) == ContractStatus.REVISION_REQUESTED

    def test_unrequired_track_is_ignored(self):
        approvals = [
            _resolved(LEGAL, ApprovalState.APPROVED),
            _resolved(FINANCE, ApprovalState.REJECTED),
        ]
        assert compute_review_status(approvals, (LEGAL,)) == ContractStatus.APPROVED

    def test_escalated_legal_is_pending_head(self):
        escalated = escalate(_open(LEGAL), ACTOR, "x", T0)
        approvals = [escalated, _resolved(FINANCE, ApprovalState.APPROVED)]
        assert compute_review_status(approvals, BOTH) == ContractStatus.PENDING_LEGAL_HEAD

    def test_mandatory_head_signoff(self):
        approvals = [_resolved(LEGAL, ApprovalState.APPROVED)]
        assert compute_review_status(
            approvals, (LEGAL,), head_signoff_required=True,
        ) == ContractStatus.PENDING_LEGAL_HEAD

        head = resolve(
            _open(LEGAL, level=EscalationLevel.HEAD),
            ApprovalState.APPROVED, ACTOR, None, T0 + timedelta(hours=1),
        )
        assert compute_review_status(
            approvals + [head], (LEGAL,), head_signoff_required=True,
        ) == ContractStatus.APPROVED

    def test_every_fold_result_has_an_event(self):
        fold_results = {
            ContractStatus.IN_REVIEW,
            ContractStatus.LEGAL_REVIEW_IN_PROGRESS,
            ContractStatus.FINANCE_REVIEW_IN_PROGRESS,
            ContractStatus.PENDING_LEGAL_HEAD,
            ContractStatus.APPROVED,
            ContractStatus.REJECTED,
            ContractStatus.REVISION_REQUESTED,
        }
        assert set(FOLD_EVENTS) == fold_results

    def test_fold_events_reach_their_target_from_in_review(self):
        for target, event in FOLD_EVENTS.items():
            if event is None or target == ContractStatus.PENDING_LEGAL_HEAD:
                continue
            assert can_transition(ContractStatus.IN_REVIEW, event)


# =============================================================================
# Order independence
# =============================================================================

resolution_states = st.sampled_from([
    None,
    ApprovalState.APPROVED,
    ApprovalState.REJECTED,
    ApprovalState.REVISION_REQUESTED,
])


class TestFoldOrderIndependence:

    @given(
        legal_state=resolution_states,
        finance_state=resolution_states,
        legal_first=st.booleans(),
        head_required=st.booleans(),
        gap_minutes=st.integers(min_value=1, max_value=10_000),
    )
    @settings(max_examples=200, deadline=None)
    def test_resolution_order_does_not_change_status(
        self, legal_state, finance_state, legal_first, head_required, gap_minutes,
    ):
        early = T0 + timedelta(minutes=1)
        late = early + timedelta(minutes=gap_minutes)

        def build(legal_at, finance_at):
            legal = _open(LEGAL)
            finance = _open(FINANCE)
            if legal_state is not None:
                legal = resolve(legal, legal_state, ACTOR, "c", legal_at)
            if finance_state is not None:
                finance = resolve(finance, finance_state, ACTOR, "c", finance_at)
            return [legal, finance]

        forward = build(early, late)
        backward = build(late, early)
        if not legal_first:
            forward.reverse()

        assert compute_review_status(forward, BOTH, head_required) == compute_review_status(
            backward, BOTH, head_required,
        )

    @given(st.permutations([LEGAL, FINANCE]))
    @settings(max_examples=20, deadline=None)
    def test_approving_both_tracks_in_any_order_approves(self, order):
        approvals = {track: _open(track) for track in BOTH}
        at = T0
        for track in order:
            at += timedelta(minutes=1)
            approvals[track] = resolve(approvals[track], ApprovalState.APPROVED, ACTOR, None, at)
        assert compute_review_status(approvals.values(), BOTH) == ContractStatus.APPROVED
