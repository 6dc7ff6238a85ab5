"""
Purchase result data models.

A PurchaseResult is produced by a purchase worker thread and consumed by the
Flask thread (PurchaseResultStore). CommitOutcome is the progress record the
orchestrator threads through the commit steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class PurchaseStatus(Enum):
    """
    Status of a purchase.

    Lifecycle:
        PENDING -> (COMPLETED | PARTIAL | FAILED)
    """

    PENDING = "pending"
    """Purchase is running in its worker thread."""

    COMPLETED = "completed"
    """Paid, claimed and (if requested) painted."""

    PARTIAL = "partial"
    """Payment captured, claim/paint incomplete. Balance stays deducted."""

    FAILED = "failed"
    """Nothing was paid. Local balance restored."""


@dataclass
class CommitOutcome:
    """
    Progress of one purchase through pay -> claim -> paint -> verify.

    ``claimed`` implies ``paid`` and ``painted`` implies ``claimed``;
    the mark_* methods refuse to break that ordering. ``verified`` is
    best-effort and never required for the purchase to be final.
    """

    paid: bool = False
    claimed: bool = False
    painted: bool = False
    verified: bool = False

    def mark_paid(self) -> None:
        self.paid = True

    def mark_claimed(self) -> None:
        if not self.paid:
            raise RuntimeError("Cannot claim before payment")
        self.claimed = True

    def mark_painted(self) -> None:
        if not self.claimed:
            raise RuntimeError("Cannot paint before claim")
        self.painted = True

    def mark_verified(self) -> None:
        self.verified = True

    def to_dict(self) -> Dict[str, bool]:
        return {
            "paid": self.paid,
            "claimed": self.claimed,
            "painted": self.painted,
            "verified": self.verified,
        }


@dataclass
class PurchaseResult:
    """
    Result of one purchase.

    Thread Safety:
        - Purchase thread WRITES to PurchaseResultStore once when done
        - Flask thread READS from the store (removes on read)
    """

    purchase_id: str
    """Unique purchase identifier (UUID)."""

    finished_at: datetime
    """When the purchase reached this status."""

    status: PurchaseStatus

    outcome: CommitOutcome = field(default_factory=CommitOutcome)

    region: Optional[Dict[str, int]] = None

    block_index: Optional[int] = None
    """Ledger block index (proof of payment), if paid."""

    amount_e8s: int = 0
    fee_e8s: int = 0

    message: str = ""
    """User-facing message (exactly one per terminal result)."""

    @classmethod
    def create_pending(cls, purchase_id: str) -> "PurchaseResult":
        return cls(
            purchase_id=purchase_id,
            finished_at=datetime.now(timezone.utc),
            status=PurchaseStatus.PENDING,
            message="Purchase in progress.",
        )

    @classmethod
    def create_completed(
        cls,
        purchase_id: str,
        outcome: CommitOutcome,
        region: Dict[str, int],
        block_index: int,
        amount_e8s: int,
        fee_e8s: int
    ) -> "PurchaseResult":
        if outcome.verified:
            message = "Purchase complete! Your changes are live."
        else:
            message = "Purchase complete. Changes may take a moment to appear everywhere."
        return cls(
            purchase_id=purchase_id,
            finished_at=datetime.now(timezone.utc),
            status=PurchaseStatus.COMPLETED,
            outcome=outcome,
            region=region,
            block_index=block_index,
            amount_e8s=amount_e8s,
            fee_e8s=fee_e8s,
            message=message,
        )

    @classmethod
    def create_partial(
        cls,
        purchase_id: str,
        outcome: CommitOutcome,
        region: Dict[str, int],
        block_index: int,
        amount_e8s: int,
        fee_e8s: int,
        error_message: str
    ) -> "PurchaseResult":
        return cls(
            purchase_id=purchase_id,
            finished_at=datetime.now(timezone.utc),
            status=PurchaseStatus.PARTIAL,
            outcome=outcome,
            region=region,
            block_index=block_index,
            amount_e8s=amount_e8s,
            fee_e8s=fee_e8s,
            message=error_message,
        )

    @classmethod
    def create_failed(
        cls,
        purchase_id: str,
        error_message: str,
        region: Optional[Dict[str, int]] = None
    ) -> "PurchaseResult":
        return cls(
            purchase_id=purchase_id,
            finished_at=datetime.now(timezone.utc),
            status=PurchaseStatus.FAILED,
            region=region,
            message=error_message,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not PurchaseStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "purchase_id": self.purchase_id,
            "finished_at": self.finished_at.isoformat(),
            "status": self.status.value,
            "outcome": self.outcome.to_dict(),
            "region": self.region,
            "block_index": self.block_index,
            "amount_e8s": self.amount_e8s,
            "fee_e8s": self.fee_e8s,
            "message": self.message,
        }
