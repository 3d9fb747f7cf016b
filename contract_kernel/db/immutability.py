"""
ORM-level immutability enforcement for the contract lifecycle records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database. We register listeners that inspect the pending change and raise
ImmutabilityViolationError, which aborts the flush and with it the whole
unit of work:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                 | Rule
------------------|--------------------------------|-------------------------------
ContractVersion   | ALWAYS (from creation)         | Restore writes a new version
AuditLogEntry     | ALWAYS (from creation)         | Hash chain must stay valid
Approval          | Once resolved (state != PENDING)| Resolved exactly once
Contract          | Never deleted                  | Cancel/terminate instead

A pending approval may still change: resolution sets state/actor/comment,
and escalation moves its level. The check uses attribute history to tell
"was pending before this flush" apart from "is pending now".

Usage:
    register_immutability_listeners()  # Called once at startup

    # In tests that need to tamper with stored history:
    unregister_immutability_listeners()
    # ... tamper ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from contract_kernel.exceptions import ImmutabilityViolationError
from contract_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, target, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_version_immutability(mapper, connection, target):
    """Versions are append-only snapshots."""
    _blocked(
        "ContractVersion", target, "UPDATE",
        "Contract versions are immutable; restore creates a new version",
    )


def _check_version_delete(mapper, connection, target):
    _blocked(
        "ContractVersion", target, "DELETE",
        "Contract versions cannot be deleted",
    )


def _check_audit_entry_immutability(mapper, connection, target):
    _blocked(
        "AuditLogEntry", target, "UPDATE",
        "Audit log entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    _blocked(
        "AuditLogEntry", target, "DELETE",
        "Audit log entries cannot be deleted",
    )


def _check_approval_immutability(mapper, connection, target):
    """
    Prevent updates to resolved approvals.

    Logic:
        1. state changing FROM a resolved value: block.
        2. state unchanged AND resolved: block (another field is changing).
        3. state changing FROM pending: allow (this IS the resolution).
    """
    from contract_kernel.models.approval import ApprovalModel

    state_history = get_history(target, "state")

    if state_history.deleted:
        previous = state_history.deleted[0]
    elif not state_history.added:
        previous = target.state
    else:
        previous = None

    if previous is None or str(getattr(previous, "value", previous)) == "PENDING":
        return

    for attr in inspect(target).attrs:
        if attr.key in ApprovalModel.MUTABLE_AFTER_RESOLUTION:
            continue
        if attr.history.has_changes():
            _blocked(
                "Approval", target, "UPDATE",
                f"Cannot modify field '{attr.key}' on a resolved approval",
                field=attr.key,
            )


def _check_approval_delete(mapper, connection, target):
    _blocked(
        "Approval", target, "DELETE",
        "Approvals are never deleted; history is preserved",
    )


def _check_contract_delete(mapper, connection, target):
    _blocked(
        "Contract", target, "DELETE",
        "Contracts are never deleted; cancel or terminate instead",
    )


def _listeners():
    from contract_kernel.models.approval import ApprovalModel
    from contract_kernel.models.audit_log import AuditLogEntryModel
    from contract_kernel.models.contract import ContractModel
    from contract_kernel.models.version import ContractVersionModel

    return [
        (ContractVersionModel, "before_update", _check_version_immutability),
        (ContractVersionModel, "before_delete", _check_version_delete),
        (AuditLogEntryModel, "before_update", _check_audit_entry_immutability),
        (AuditLogEntryModel, "before_delete", _check_audit_entry_delete),
        (ApprovalModel, "before_update", _check_approval_immutability),
        (ApprovalModel, "before_delete", _check_approval_delete),
        (ContractModel, "before_delete", _check_contract_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is a no-op.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
