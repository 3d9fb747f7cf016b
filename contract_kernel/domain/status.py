"""
Contract status state machine (``contract_kernel.domain.status``).

Responsibility
--------------
The authoritative definition of contract statuses, lifecycle events and
the transition table ``(status, event) -> next status``.  Every status
change in the kernel, whether driven by an approval fold or by a direct
user action, goes through :func:`next_status` / :func:`transition`.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Closed status set -- ``ContractStatus`` is the only status type; the ORM
  check constraint is generated from it.
* Explicit table -- a pair absent from ``CONTRACT_TRANSITIONS`` raises
  ``InvalidTransitionError``; there are no silent no-ops.
* Final statuses (CANCELLED, TERMINATED, EXPIRED) have no outgoing edges.
  REJECTED accepts only RESUBMIT and ACTIVE accepts only EXPIRE/TERMINATE.
* CANCEL is defined for every status outside ``TERMINAL_STATUSES``.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from contract_kernel.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from contract_kernel.domain.dtos import Contract


class ContractStatus(str, Enum):
    """Contract lifecycle statuses."""

    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    LEGAL_REVIEW_IN_PROGRESS = "LEGAL_REVIEW_IN_PROGRESS"
    FINANCE_REVIEW_IN_PROGRESS = "FINANCE_REVIEW_IN_PROGRESS"
    PENDING_LEGAL_HEAD = "PENDING_LEGAL_HEAD"
    APPROVED = "APPROVED"
    SENT_TO_COUNTERPARTY = "SENT_TO_COUNTERPARTY"
    COUNTERSIGNED = "COUNTERSIGNED"
    ACTIVE = "ACTIVE"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    TERMINATED = "TERMINATED"
    EXPIRED = "EXPIRED"


class LifecycleEvent(str, Enum):
    """Events accepted by the transition table."""

    SUBMIT = "SUBMIT"
    RESUBMIT = "RESUBMIT"
    RETURN_TO_DRAFT = "RETURN_TO_DRAFT"
    # Approval fold outcomes
    LEGAL_CLEARED = "LEGAL_CLEARED"
    FINANCE_CLEARED = "FINANCE_CLEARED"
    HEAD_SIGNOFF_REQUIRED = "HEAD_SIGNOFF_REQUIRED"
    TRACKS_CLEARED = "TRACKS_CLEARED"
    REJECT = "REJECT"
    REQUEST_REVISION = "REQUEST_REVISION"
    ESCALATE = "ESCALATE"
    RETURN_TO_MANAGER = "RETURN_TO_MANAGER"
    # Execution
    SEND_TO_COUNTERPARTY = "SEND_TO_COUNTERPARTY"
    COUNTERSIGN = "COUNTERSIGN"
    ACTIVATE = "ACTIVATE"
    # External triggers
    EXPIRE = "EXPIRE"
    TERMINATE = "TERMINATE"
    CANCEL = "CANCEL"


S = ContractStatus
E = LifecycleEvent

# Review statuses share the same exits
_REVIEW_EXITS: dict[LifecycleEvent, ContractStatus] = {
    E.HEAD_SIGNOFF_REQUIRED: S.PENDING_LEGAL_HEAD,
    E.TRACKS_CLEARED: S.APPROVED,
    E.REJECT: S.REJECTED,
    E.REQUEST_REVISION: S.REVISION_REQUESTED,
    E.CANCEL: S.CANCELLED,
}

CONTRACT_TRANSITIONS: dict[ContractStatus, dict[LifecycleEvent, ContractStatus]] = {
    S.DRAFT: {
        E.SUBMIT: S.IN_REVIEW,
        E.CANCEL: S.CANCELLED,
    },
    S.IN_REVIEW: {
        **_REVIEW_EXITS,
        E.LEGAL_CLEARED: S.FINANCE_REVIEW_IN_PROGRESS,
        E.FINANCE_CLEARED: S.LEGAL_REVIEW_IN_PROGRESS,
        E.ESCALATE: S.PENDING_LEGAL_HEAD,
    },
    S.LEGAL_REVIEW_IN_PROGRESS: {
        **_REVIEW_EXITS,
        E.LEGAL_CLEARED: S.FINANCE_REVIEW_IN_PROGRESS,
        E.ESCALATE: S.PENDING_LEGAL_HEAD,
    },
    S.FINANCE_REVIEW_IN_PROGRESS: {
        **_REVIEW_EXITS,
    },
    S.PENDING_LEGAL_HEAD: {
        E.LEGAL_CLEARED: S.FINANCE_REVIEW_IN_PROGRESS,
        E.TRACKS_CLEARED: S.APPROVED,
        E.RETURN_TO_MANAGER: S.LEGAL_REVIEW_IN_PROGRESS,
        E.REJECT: S.REJECTED,
        E.REQUEST_REVISION: S.REVISION_REQUESTED,
        E.CANCEL: S.CANCELLED,
    },
    S.APPROVED: {
        E.SEND_TO_COUNTERPARTY: S.SENT_TO_COUNTERPARTY,
        E.CANCEL: S.CANCELLED,
    },
    S.SENT_TO_COUNTERPARTY: {
        E.COUNTERSIGN: S.COUNTERSIGNED,
        E.CANCEL: S.CANCELLED,
    },
    S.COUNTERSIGNED: {
        E.ACTIVATE: S.ACTIVE,
        E.CANCEL: S.CANCELLED,
    },
    S.ACTIVE: {
        E.EXPIRE: S.EXPIRED,
        E.TERMINATE: S.TERMINATED,
    },
    S.REVISION_REQUESTED: {
        E.SUBMIT: S.IN_REVIEW,
        E.RETURN_TO_DRAFT: S.DRAFT,
        E.CANCEL: S.CANCELLED,
    },
    S.REJECTED: {
        E.RESUBMIT: S.IN_REVIEW,
    },
    S.CANCELLED: {},
    S.TERMINATED: {},
    S.EXPIRED: {},
}

# No approval or version mutation is accepted in these statuses.
TERMINAL_STATUSES: frozenset[ContractStatus] = frozenset({
    S.ACTIVE,
    S.CANCELLED,
    S.REJECTED,
    S.TERMINATED,
    S.EXPIRED,
})

# No event at all is accepted in these statuses.
FINAL_STATUSES: frozenset[ContractStatus] = frozenset(
    status for status, edges in CONTRACT_TRANSITIONS.items() if not edges
)

REVIEW_STATUSES: frozenset[ContractStatus] = frozenset({
    S.IN_REVIEW,
    S.LEGAL_REVIEW_IN_PROGRESS,
    S.FINANCE_REVIEW_IN_PROGRESS,
    S.PENDING_LEGAL_HEAD,
})

del S, E


def is_terminal(status: ContractStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_events(status: ContractStatus) -> frozenset[LifecycleEvent]:
    """Events the table defines for ``status``."""
    return frozenset(CONTRACT_TRANSITIONS.get(status, {}))


def can_transition(status: ContractStatus, event: LifecycleEvent) -> bool:
    return event in CONTRACT_TRANSITIONS.get(status, {})


def next_status(
    status: ContractStatus,
    event: LifecycleEvent,
    contract_id: object = "?",
) -> ContractStatus:
    """Look up the target status or raise ``InvalidTransitionError``."""
    edges = CONTRACT_TRANSITIONS.get(status, {})
    target = edges.get(event)
    if target is None:
        raise InvalidTransitionError(str(contract_id), status.value, event.value)
    return target


def transition(
    contract: Contract,
    event: LifecycleEvent,
    at: datetime | None = None,
) -> Contract:
    """Return a copy of ``contract`` moved along ``event``.

    The input is never mutated.  ``updated_at`` is set to ``at`` when given.
    """
    target = next_status(contract.status, event, contract.id)
    if at is None:
        return replace(contract, status=target)
    return replace(contract, status=target, updated_at=at)


def ensure_not_terminal(
    status: ContractStatus,
    operation: LifecycleEvent | str,
    contract_id: object = "?",
) -> None:
    """Guard used as the first step of every approval/version mutation."""
    if status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            str(contract_id), status.value, getattr(operation, "value", operation),
        )


class StatusStateMachine:
    """Object facade over the transition table.

    Services hold one instance so tests can assert on a single seam; the
    behaviour is exactly :func:`next_status`.
    """

    transitions = CONTRACT_TRANSITIONS
    terminal_statuses = TERMINAL_STATUSES

    def next_status(
        self,
        status: ContractStatus,
        event: LifecycleEvent,
        contract_id: object = "?",
    ) -> ContractStatus:
        return next_status(status, event, contract_id)

    def transition(
        self,
        contract: Contract,
        event: LifecycleEvent,
        at: datetime | None = None,
    ) -> Contract:
        return transition(contract, event, at)

    def allowed_events(self, status: ContractStatus) -> frozenset[LifecycleEvent]:
        return allowed_events(status)
