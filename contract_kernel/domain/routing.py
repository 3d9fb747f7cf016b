"""
Approval routing policy (``contract_kernel.domain.routing``).

Decides which approval tracks a contract needs and whether head-level
legal sign-off is mandatory.  The policy is compiled from configuration
(``contract_config``) and injected; this module never reads files.

LEGAL is always required.  FINANCE is required when the submitter asked
for it, or when the finance track is enabled and the amount exceeds the
finance threshold.  Head sign-off is mandatory when asked for, or when the
amount reaches the head sign-off threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from contract_kernel.domain.approval import ApprovalTrack

if TYPE_CHECKING:
    from contract_kernel.domain.dtos import Contract


@dataclass(frozen=True)
class ApprovalRoutingPolicy:
    finance_track_enabled: bool = True
    finance_amount_threshold: Decimal | None = Decimal("100000.00")
    head_signoff_amount_threshold: Decimal | None = None
    currency: str = "USD"

    def requires_finance(self, contract: Contract) -> bool:
        if contract.finance_review_requested:
            return True
        if not self.finance_track_enabled or self.finance_amount_threshold is None:
            return False
        return (
            contract.amount is not None
            and contract.amount > self.finance_amount_threshold
        )

    def head_signoff_required(self, contract: Contract) -> bool:
        if contract.head_signoff_requested:
            return True
        if self.head_signoff_amount_threshold is None:
            return False
        return (
            contract.amount is not None
            and contract.amount >= self.head_signoff_amount_threshold
        )

    def required_tracks(self, contract: Contract) -> tuple[ApprovalTrack, ...]:
        """Tracks in opening order."""
        if self.requires_finance(contract):
            return (ApprovalTrack.LEGAL, ApprovalTrack.FINANCE)
        return (ApprovalTrack.LEGAL,)


def snapshot_tracks(
    requires_finance_review: bool,
) -> tuple[ApprovalTrack, ...]:
    """Required tracks as recorded on a contract at its last submission."""
    if requires_finance_review:
        return (ApprovalTrack.LEGAL, ApprovalTrack.FINANCE)
    return (ApprovalTrack.LEGAL,)
