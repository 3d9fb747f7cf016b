"""
Available actions (``contract_kernel.domain.actions``).

Responsibility
--------------
The single pure source of truth for what an actor may attempt next on a
contract.  Callers render buttons from ``compute_available_actions``
instead of re-deriving status checks; the lifecycle service checks the
same ``Action`` values against the injected ``PermissionChecker``.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  Reads the
transition table in ``domain/status`` and the track fold helpers in
``domain/approval``.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING

from contract_kernel.domain.approval import (
    Approval,
    ApprovalTrack,
    EscalationLevel,
    latest_by_track,
)
from contract_kernel.domain.status import (
    REVIEW_STATUSES,
    TERMINAL_STATUSES,
    ContractStatus,
    LifecycleEvent,
    can_transition,
)

if TYPE_CHECKING:
    from contract_kernel.domain.dtos import Contract


class Action(str, Enum):
    """Actor-facing actions; also the permission vocabulary."""

    SUBMIT = "SUBMIT"
    RESUBMIT = "RESUBMIT"
    REOPEN_DRAFT = "REOPEN_DRAFT"
    REVIEW_LEGAL = "REVIEW_LEGAL"
    REVIEW_FINANCE = "REVIEW_FINANCE"
    REVIEW_LEGAL_HEAD = "REVIEW_LEGAL_HEAD"
    ESCALATE = "ESCALATE"
    RETURN_TO_MANAGER = "RETURN_TO_MANAGER"
    CANCEL = "CANCEL"
    SEND_TO_COUNTERPARTY = "SEND_TO_COUNTERPARTY"
    RECORD_COUNTERSIGNATURE = "RECORD_COUNTERSIGNATURE"
    ACTIVATE = "ACTIVATE"
    TERMINATE = "TERMINATE"
    CREATE_VERSION = "CREATE_VERSION"
    RESTORE_VERSION = "RESTORE_VERSION"


# Returning an escalated approval needs head-level authority.
_CAPABILITY_FOR: dict[Action, Action] = {
    Action.RETURN_TO_MANAGER: Action.REVIEW_LEGAL_HEAD,
}

# Direct user actions that map one-to-one onto a transition-table event.
_EVENT_FOR: dict[Action, LifecycleEvent] = {
    Action.SUBMIT: LifecycleEvent.SUBMIT,
    Action.RESUBMIT: LifecycleEvent.RESUBMIT,
    Action.REOPEN_DRAFT: LifecycleEvent.RETURN_TO_DRAFT,
    Action.CANCEL: LifecycleEvent.CANCEL,
    Action.SEND_TO_COUNTERPARTY: LifecycleEvent.SEND_TO_COUNTERPARTY,
    Action.RECORD_COUNTERSIGNATURE: LifecycleEvent.COUNTERSIGN,
    Action.ACTIVATE: LifecycleEvent.ACTIVATE,
    Action.TERMINATE: LifecycleEvent.TERMINATE,
}


def required_capability(action: Action) -> Action:
    """The permission an actor needs to attempt ``action``."""
    return _CAPABILITY_FOR.get(action, action)


def review_action(track: ApprovalTrack, level: EscalationLevel) -> Action:
    """The permission needed to resolve an approval on ``track`` at ``level``."""
    if track == ApprovalTrack.FINANCE:
        return Action.REVIEW_FINANCE
    if level == EscalationLevel.HEAD:
        return Action.REVIEW_LEGAL_HEAD
    return Action.REVIEW_LEGAL


def structurally_available(
    status: ContractStatus, approvals: Iterable[Approval],
) -> frozenset[Action]:
    """Actions the contract's state allows, before any permission check."""
    available = {
        action for action, event in _EVENT_FOR.items()
        if can_transition(status, event)
    }

    if status not in TERMINAL_STATUSES:
        available.add(Action.CREATE_VERSION)
        available.add(Action.RESTORE_VERSION)

    if status in REVIEW_STATUSES:
        latest = latest_by_track(approvals)
        legal = latest.get(ApprovalTrack.LEGAL)
        finance = latest.get(ApprovalTrack.FINANCE)
        if legal is not None and legal.is_pending:
            if legal.level == EscalationLevel.HEAD:
                available.add(Action.REVIEW_LEGAL_HEAD)
                if status == ContractStatus.PENDING_LEGAL_HEAD:
                    available.add(Action.RETURN_TO_MANAGER)
            else:
                available.add(Action.REVIEW_LEGAL)
                if can_transition(status, LifecycleEvent.ESCALATE):
                    available.add(Action.ESCALATE)
        if finance is not None and finance.is_pending:
            available.add(Action.REVIEW_FINANCE)

    return frozenset(available)


def compute_available_actions(
    contract: Contract,
    approvals: Iterable[Approval],
    actor_capabilities: Iterable[Action],
) -> frozenset[Action]:
    """Actions ``actor_capabilities`` allow on ``contract`` right now."""
    capabilities = frozenset(actor_capabilities)
    return frozenset(
        action
        for action in structurally_available(contract.status, approvals)
        if required_capability(action) in capabilities
    )
