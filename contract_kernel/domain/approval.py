"""
Approval track domain types (``contract_kernel.domain.approval``).

Responsibility
--------------
Pure value objects and validators for one reviewing function (LEGAL or
FINANCE): the approval record, its resolution states, its escalation
sub-state, and the pure fold that turns the latest approval of every
required track into one contract status.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.  May
import only from ``domain/status``.

Invariants enforced
-------------------
* Single pending approval per track -- ``ensure_can_open`` raises
  ``DuplicatePendingApprovalError`` when a PENDING approval already exists.
* Resolved exactly once -- ``ensure_pending`` raises
  ``InvalidApprovalStateError`` for any non-PENDING approval.
* Order independence -- ``compute_review_status`` is a pure fold over the
  latest approval per required track, so the order in which tracks are
  resolved never changes the result.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from contract_kernel.domain.status import ContractStatus, LifecycleEvent
from contract_kernel.exceptions import (
    DuplicatePendingApprovalError,
    InvalidApprovalStateError,
    ValidationError,
)


class ApprovalTrack(str, Enum):
    """Independent reviewing functions."""

    LEGAL = "LEGAL"
    FINANCE = "FINANCE"


class ApprovalState(str, Enum):
    """Approval record states.  Everything but PENDING is final."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVISION_REQUESTED = "REVISION_REQUESTED"


class EscalationLevel(str, Enum):
    """Who currently owns a LEGAL approval."""

    MANAGER = "MANAGER"
    HEAD = "HEAD"


APPROVAL_TRANSITIONS: dict[ApprovalState, frozenset[ApprovalState]] = {
    ApprovalState.PENDING: frozenset({
        ApprovalState.APPROVED,
        ApprovalState.REJECTED,
        ApprovalState.REVISION_REQUESTED,
    }),
    ApprovalState.APPROVED: frozenset(),
    ApprovalState.REJECTED: frozenset(),
    ApprovalState.REVISION_REQUESTED: frozenset(),
}

_LEVEL_RANK = {EscalationLevel.MANAGER: 0, EscalationLevel.HEAD: 1}


@dataclass(frozen=True)
class Approval:
    """One reviewer decision slot on one track for one review round."""

    id: UUID
    contract_id: UUID
    track: ApprovalTrack
    state: ApprovalState
    level: EscalationLevel
    review_round: int
    created_at: datetime
    actor_id: UUID | None = None
    comment: str | None = None
    resolved_at: datetime | None = None
    escalated_by: UUID | None = None
    escalated_at: datetime | None = None
    escalation_reason: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.state == ApprovalState.PENDING

    @property
    def is_resolved(self) -> bool:
        return self.state != ApprovalState.PENDING

    @property
    def is_head_level(self) -> bool:
        return self.level == EscalationLevel.HEAD


def open_approval(
    contract_id: UUID,
    track: ApprovalTrack,
    review_round: int,
    created_at: datetime,
    level: EscalationLevel = EscalationLevel.MANAGER,
) -> Approval:
    return Approval(
        id=uuid4(),
        contract_id=contract_id,
        track=track,
        state=ApprovalState.PENDING,
        level=level,
        review_round=review_round,
        created_at=created_at,
    )


# =========================================================================
# Validators
# =========================================================================


def pending_for_track(
    approvals: Iterable[Approval], track: ApprovalTrack,
) -> Approval | None:
    for approval in approvals:
        if approval.track == track and approval.is_pending:
            return approval
    return None


def ensure_can_open(
    contract_id: UUID, track: ApprovalTrack, approvals: Iterable[Approval],
) -> None:
    """At most one PENDING approval per (contract, track)."""
    existing = pending_for_track(approvals, track)
    if existing is not None:
        raise DuplicatePendingApprovalError(
            str(contract_id), track.value, str(existing.id),
        )


def ensure_pending(approval: Approval) -> None:
    if not approval.is_pending:
        raise InvalidApprovalStateError(
            str(approval.id), approval.state.value, "approval is already resolved",
        )


def ensure_escalatable(approvals: Iterable[Approval]) -> Approval:
    """Return the LEGAL approval that may be escalated to HEAD level.

    The latest LEGAL approval must be PENDING at MANAGER level.
    """
    legal = latest_by_track(approvals).get(ApprovalTrack.LEGAL)
    if legal is None:
        raise InvalidApprovalStateError("?", "absent", "no LEGAL approval to escalate")
    if not legal.is_pending:
        raise InvalidApprovalStateError(
            str(legal.id), legal.state.value, "only a pending LEGAL approval can be escalated",
        )
    if legal.is_head_level:
        raise InvalidApprovalStateError(
            str(legal.id), legal.state.value, "already at HEAD level",
        )
    return legal


def ensure_head_level(approval: Approval) -> None:
    if approval.track != ApprovalTrack.LEGAL or not approval.is_head_level:
        raise InvalidApprovalStateError(
            str(approval.id), approval.state.value, "approval is not at HEAD level",
        )


def require_text(field: str, value: str | None, min_length: int = 1) -> str:
    """Trim ``value`` and reject it when shorter than ``min_length``."""
    text = (value or "").strip()
    if len(text) < min_length:
        if min_length <= 1:
            raise ValidationError(field, "is required")
        raise ValidationError(field, f"must be at least {min_length} characters")
    return text


# =========================================================================
# Pure transforms
# =========================================================================


def resolve(
    approval: Approval,
    state: ApprovalState,
    actor_id: UUID,
    comment: str | None,
    at: datetime,
) -> Approval:
    """Return ``approval`` resolved to ``state``."""
    ensure_pending(approval)
    if state not in APPROVAL_TRANSITIONS[approval.state]:
        raise InvalidApprovalStateError(
            str(approval.id), approval.state.value, f"cannot resolve to {state.value}",
        )
    return replace(
        approval,
        state=state,
        actor_id=actor_id,
        comment=comment,
        resolved_at=at,
    )


def escalate(
    approval: Approval, actor_id: UUID, reason: str, at: datetime,
) -> Approval:
    ensure_pending(approval)
    return replace(
        approval,
        level=EscalationLevel.HEAD,
        escalated_by=actor_id,
        escalated_at=at,
        escalation_reason=reason,
    )


def return_to_manager(approval: Approval) -> Approval:
    ensure_pending(approval)
    ensure_head_level(approval)
    return replace(approval, level=EscalationLevel.MANAGER)


# =========================================================================
# Fold
# =========================================================================


def _recency(approval: Approval) -> tuple:
    # Within one round a HEAD-level slot supersedes the MANAGER one, and
    # the single pending slot supersedes resolved ones at the same level.
    return (
        approval.review_round,
        _LEVEL_RANK[approval.level],
        1 if approval.is_pending else 0,
        approval.resolved_at or approval.created_at,
    )


def latest_by_track(approvals: Iterable[Approval]) -> dict[ApprovalTrack, Approval]:
    """Latest approval per track; older rounds are history only."""
    latest: dict[ApprovalTrack, Approval] = {}
    for approval in approvals:
        current = latest.get(approval.track)
        if current is None or _recency(approval) > _recency(current):
            latest[approval.track] = approval
    return latest


def head_signoff_given(approvals: Iterable[Approval]) -> bool:
    legal = latest_by_track(approvals).get(ApprovalTrack.LEGAL)
    return (
        legal is not None
        and legal.is_head_level
        and legal.state == ApprovalState.APPROVED
    )


def compute_review_status(
    approvals: Iterable[Approval],
    required_tracks: Iterable[ApprovalTrack],
    head_signoff_required: bool = False,
) -> ContractStatus:
    """Fold the latest approval of every required track into one status.

    A required track with no approval at all counts as pending.
    """
    approvals = list(approvals)
    required = frozenset(required_tracks)
    latest = latest_by_track(approvals)
    relevant = [latest[track] for track in required if track in latest]

    if any(a.state == ApprovalState.REJECTED for a in relevant):
        return ContractStatus.REJECTED
    if any(a.state == ApprovalState.REVISION_REQUESTED for a in relevant):
        return ContractStatus.REVISION_REQUESTED

    legal = latest.get(ApprovalTrack.LEGAL)
    if legal is not None and legal.is_pending and legal.is_head_level:
        return ContractStatus.PENDING_LEGAL_HEAD

    pending = frozenset(
        track for track in required
        if track not in latest or latest[track].is_pending
    )
    if pending and pending == required:
        return ContractStatus.IN_REVIEW
    if pending == {ApprovalTrack.LEGAL}:
        return ContractStatus.LEGAL_REVIEW_IN_PROGRESS
    if pending == {ApprovalTrack.FINANCE}:
        return ContractStatus.FINANCE_REVIEW_IN_PROGRESS

    if head_signoff_required and not head_signoff_given(approvals):
        return ContractStatus.PENDING_LEGAL_HEAD
    return ContractStatus.APPROVED


# Event that moves a contract to a fold result.  IN_REVIEW is entered only
# by SUBMIT/RESUBMIT, so a fold landing there never changes status.
FOLD_EVENTS: dict[ContractStatus, LifecycleEvent | None] = {
    ContractStatus.IN_REVIEW: None,
    ContractStatus.LEGAL_REVIEW_IN_PROGRESS: LifecycleEvent.FINANCE_CLEARED,
    ContractStatus.FINANCE_REVIEW_IN_PROGRESS: LifecycleEvent.LEGAL_CLEARED,
    ContractStatus.PENDING_LEGAL_HEAD: LifecycleEvent.HEAD_SIGNOFF_REQUIRED,
    ContractStatus.APPROVED: LifecycleEvent.TRACKS_CLEARED,
    ContractStatus.REJECTED: LifecycleEvent.REJECT,
    ContractStatus.REVISION_REQUESTED: LifecycleEvent.REQUEST_REVISION,
}
