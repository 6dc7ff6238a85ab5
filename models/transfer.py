"""
Ledger transfer outcomes.

A TransferReceipt is the only proof of payment the orchestrator accepts.
TransferRejection wraps the ICRC-1 ``TransferError`` variant.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TransferReceipt:
    """A successful transfer: block index plus what was actually charged."""

    block_index: int
    amount: int
    fee: int

    @property
    def total(self) -> int:
        return self.amount + self.fee


@dataclass(frozen=True)
class TransferRejection:
    """
    A structured ledger rejection.

    ``tag`` is the variant name (BadFee, InsufficientFunds, Duplicate, ...),
    ``payload`` its record (may be empty for null variants).
    """

    tag: str
    payload: Dict[str, Any] = field(default_factory=dict)

    BAD_FEE = "BadFee"
    BAD_BURN = "BadBurn"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    TOO_OLD = "TooOld"
    CREATED_IN_FUTURE = "CreatedInFuture"
    DUPLICATE = "Duplicate"
    TEMPORARILY_UNAVAILABLE = "TemporarilyUnavailable"
    GENERIC_ERROR = "GenericError"

    @classmethod
    def from_variant(cls, err: Any) -> "TransferRejection":
        """Parse ``{"BadFee": {"expected_fee": 20000}}`` style variants."""
        if isinstance(err, dict) and len(err) == 1:
            tag, payload = next(iter(err.items()))
            return cls(str(tag), payload if isinstance(payload, dict) else {})
        if isinstance(err, str):
            return cls(err)
        return cls(cls.GENERIC_ERROR, {"message": repr(err)})

    @property
    def is_clock_skew(self) -> bool:
        return self.tag in (self.CREATED_IN_FUTURE, self.TOO_OLD)

    @property
    def expected_fee(self) -> Optional[int]:
        value = self.payload.get("expected_fee")
        return int(value) if value is not None else None

    @property
    def duplicate_of(self) -> Optional[int]:
        value = self.payload.get("duplicate_of")
        return int(value) if value is not None else None

    def describe(self) -> str:
        try:
            return json.dumps({self.tag: self.payload}, default=str)
        except (TypeError, ValueError):
            return f"{self.tag}: {self.payload!r}"
