"""
LifecycleConfig schema.

The frozen runtime artifact produced from a YAML configuration set.  The
kernel never sees these types directly: ``LifecycleConfig.routing_policy()``
translates the routing section into the kernel's ``ApprovalRoutingPolicy``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from contract_kernel.domain.routing import ApprovalRoutingPolicy

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoutingConfig:
    """Which approval tracks a contract needs."""

    finance_track_enabled: bool = True
    finance_amount_threshold: Decimal | None = Decimal("100000.00")
    head_signoff_amount_threshold: Decimal | None = None
    currency: str = "USD"


@dataclass(frozen=True)
class ValidationConfig:
    """Input limits checked at the lifecycle service boundary."""

    cancel_reason_min_length: int = 10
    require_escalation_reason: bool = True


@dataclass(frozen=True)
class DiffConfig:
    """Changelog generation settings."""

    modified_similarity_threshold: float = 0.5
    # Largest LCS table (rows x columns) built for one alignment.
    max_alignment_cells: int = 4_000_000


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LifecycleConfig:
    config_id: str
    version: int
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    diff: DiffConfig = field(default_factory=DiffConfig)
    checksum: str = ""

    def routing_policy(self) -> ApprovalRoutingPolicy:
        return ApprovalRoutingPolicy(
            finance_track_enabled=self.routing.finance_track_enabled,
            finance_amount_threshold=self.routing.finance_amount_threshold,
            head_signoff_amount_threshold=self.routing.head_signoff_amount_threshold,
            currency=self.routing.currency,
        )
