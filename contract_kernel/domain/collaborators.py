"""
Narrow interfaces the kernel consumes (``contract_kernel.domain.collaborators``).

Identity, role administration and notification delivery live outside the
kernel.  The kernel sees them only through these Protocols, injected into
``LifecycleService``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from contract_kernel.domain.actions import Action
from contract_kernel.domain.dtos import Contract
from contract_kernel.domain.status import ContractStatus


class PermissionChecker(Protocol):
    """Answers whether an actor may perform an action on a contract."""

    def can(self, actor_id: UUID, action: Action, contract: Contract) -> bool: ...


@dataclass(frozen=True)
class LifecycleNotification:
    """Fire-and-forget message emitted after a unit of work commits."""

    contract_id: UUID
    action: str
    actor_id: UUID
    to_status: ContractStatus
    from_status: ContractStatus | None = None
    detail: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    """Delivers notifications.  Failures never undo a committed operation."""

    def notify(self, notification: LifecycleNotification) -> None: ...
