"""
Data models for the Pixel Billboard client.

- Region: inclusive rectangle of canvas cells
- PendingPreview: RGBA paint buffer awaiting purchase
- SessionContext: identity, connection, sticky host, balance
- TransferReceipt / TransferRejection: ledger transfer outcomes
- PurchaseResult / CommitOutcome: result of one purchase

Region, PendingPreview and the transfer models are frozen so they can be
handed to purchase threads safely.
"""

from .region import Region
from .paint import PendingPreview, pack_rgba, unpack_rgba
from .session import BalanceStatus, BalanceTicket, SessionContext, StickyHost, TicketState
from .transfer import TransferReceipt, TransferRejection
from .purchase_result import CommitOutcome, PurchaseResult, PurchaseStatus

__all__ = [
    "Region",
    "PendingPreview",
    "pack_rgba",
    "unpack_rgba",
    "BalanceStatus",
    "BalanceTicket",
    "SessionContext",
    "StickyHost",
    "TicketState",
    "TransferReceipt",
    "TransferRejection",
    "CommitOutcome",
    "PurchaseResult",
    "PurchaseStatus",
]
