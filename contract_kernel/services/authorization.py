"""
Permission enforcement against the injected PermissionChecker.

The kernel knows only the ``Action`` vocabulary; which roles grant which
actions is decided outside it.  ``GrantTablePermissionChecker`` is the
simplest conforming checker: an explicit actor -> actions table, used by
scripts and tests.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from uuid import UUID

from contract_kernel.domain.actions import Action, required_capability
from contract_kernel.domain.collaborators import PermissionChecker
from contract_kernel.domain.dtos import Contract
from contract_kernel.exceptions import UnauthorizedError
from contract_kernel.logging_config import get_logger

logger = get_logger("services.authorization")


def ensure_permitted(
    checker: PermissionChecker,
    actor_id: UUID,
    action: Action,
    contract: Contract,
) -> None:
    """Raise UnauthorizedError unless ``checker`` grants ``action``."""
    capability = required_capability(action)
    if checker.can(actor_id, capability, contract):
        return
    logger.warning(
        "permission_denied",
        extra={
            "actor_id": str(actor_id),
            "action": capability.value,
            "contract_id": str(contract.id),
        },
    )
    raise UnauthorizedError(str(actor_id), capability.value, str(contract.id))


class GrantTablePermissionChecker:
    """Grants each actor a fixed set of actions on every contract."""

    def __init__(self, grants: Mapping[UUID, Iterable[Action]] | None = None):
        self._grants: dict[UUID, set[Action]] = {
            actor: set(actions) for actor, actions in (grants or {}).items()
        }

    def grant(self, actor_id: UUID, *actions: Action) -> None:
        self._grants.setdefault(actor_id, set()).update(actions)

    def revoke(self, actor_id: UUID, *actions: Action) -> None:
        self._grants.get(actor_id, set()).difference_update(actions)

    def capabilities(self, actor_id: UUID) -> frozenset[Action]:
        return frozenset(self._grants.get(actor_id, ()))

    def can(self, actor_id: UUID, action: Action, contract: Contract) -> bool:
        return action in self._grants.get(actor_id, ())
