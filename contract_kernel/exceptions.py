"""
Typed Exception Hierarchy for the Contract Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP layer, scripts, UI adapters) must render precise messages and
decide whether to retry. Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        lifecycle.approve(approval_id, actor_id, "looks good")
    except InvalidApprovalStateError as e:
        api_response(code=e.code, approval=e.approval_id, state=e.state)
    except ConcurrentModificationError:
        retry_once()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ContractKernelError:

    ContractKernelError (base)
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError
    |   +-- ContractNotFoundError
    |
    +-- InvalidApprovalStateError
    |   +-- ApprovalNotFoundError
    |   +-- DuplicatePendingApprovalError
    |
    +-- ValidationError
    |
    +-- UnauthorizedError
    |
    +-- VersionError
    |   +-- VersionNotFoundError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Lifecycle       | INVALID_TRANSITION          | (status, event) not in transition table
                | CONTRACT_NOT_FOUND          | Contract ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Approval        | INVALID_APPROVAL_STATE      | Resolving a non-pending approval
                | APPROVAL_NOT_FOUND          | Approval ID doesn't exist
                | DUPLICATE_PENDING_APPROVAL  | Second pending approval on one track
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Missing/short comment, reason, recipients
----------------|-----------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED                | PermissionChecker denied the action
----------------|-----------------------------|-----------------------------------------
Version         | VERSION_NOT_FOUND           | Version ID doesn't exist for contract
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Per-contract hash chain mismatch
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Lost the per-contract serialization race
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. InvalidTransitionError is final. Do not retry; show the current status.
2. ConcurrentModificationError is safe to retry ONCE by the caller. The
   kernel itself never retries.
3. AuditChainBrokenError means stored history was altered outside the
   kernel. Halt processing for that contract and investigate.
"""


class ContractKernelError(Exception):
    """
    Base exception for all contract kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CONTRACT_KERNEL_ERROR"


# Lifecycle exceptions


class LifecycleError(ContractKernelError):
    """Base exception for contract lifecycle errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """The event is not defined for the contract's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, contract_id: str, status: str, event: str):
        self.contract_id = contract_id
        self.status = status
        self.event = event
        super().__init__(
            f"Contract {contract_id}: event {event} is not allowed "
            f"from status {status}"
        )


class ContractNotFoundError(LifecycleError):
    """Contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Contract not found: {contract_id}")


# Approval exceptions


class InvalidApprovalStateError(ContractKernelError):
    """Attempt to act on an approval that is not in an actionable state."""

    code: str = "INVALID_APPROVAL_STATE"

    def __init__(self, approval_id: str, state: str, reason: str = ""):
        self.approval_id = approval_id
        self.state = state
        self.reason = reason
        message = f"Approval {approval_id} is {state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ApprovalNotFoundError(InvalidApprovalStateError):
    """Approval with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        super().__init__(approval_id, "absent", "approval does not exist")


class DuplicatePendingApprovalError(InvalidApprovalStateError):
    """A pending approval already exists for this contract and track."""

    code: str = "DUPLICATE_PENDING_APPROVAL"

    def __init__(self, contract_id: str, track: str, existing_approval_id: str):
        self.contract_id = contract_id
        self.track = track
        super().__init__(
            existing_approval_id,
            "pending",
            f"contract {contract_id} already has a pending {track} approval",
        )


# Validation exceptions


class ValidationError(ContractKernelError):
    """A required input is missing or does not meet its constraints."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


# Authorization exceptions


class UnauthorizedError(ContractKernelError):
    """The permission checker denied the action."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, action: str, contract_id: str):
        self.actor_id = actor_id
        self.action = action
        self.contract_id = contract_id
        super().__init__(
            f"Actor {actor_id} is not permitted to {action} "
            f"on contract {contract_id}"
        )


# Version exceptions


class VersionError(ContractKernelError):
    """Base exception for version ledger errors."""

    code: str = "VERSION_ERROR"


class VersionNotFoundError(VersionError):
    """Version with given ID does not exist for the contract."""

    code: str = "VERSION_NOT_FOUND"

    def __init__(self, contract_id: str, version_id: str):
        self.contract_id = contract_id
        self.version_id = version_id
        super().__init__(
            f"Version {version_id} not found for contract {contract_id}"
        )


# Audit exceptions


class AuditError(ContractKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Per-contract audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Concurrency exceptions


class ConcurrencyError(ContractKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Another transaction modified the contract first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, contract_id: str, operation: str):
        self.contract_id = contract_id
        self.operation = operation
        super().__init__(
            f"Concurrent modification of contract {contract_id} "
            f"during {operation}: retry once"
        )


# Immutability exceptions


class ImmutabilityError(ContractKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
