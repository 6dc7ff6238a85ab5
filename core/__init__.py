"""
Core module for the Pixel Billboard client.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- remote: Boundary host transport and typed ledger/billboard clients
- retry: Shared backoff primitive
"""

from .exceptions import (
    BillboardError,
    NoHealthyHostError,
    RemoteCallError,
    RemoteTimeoutError,
    TicketAlreadyResolvedError,
    PurchaseError,
    NotSignedInError,
    InvalidLinkError,
    InvalidRegionError,
    PurchaseInProgressError,
    InsufficientBalanceError,
    PartialCommitError,
)
from .remote import (
    Identity,
    ProtocolVersion,
    HttpTransport,
    ConnectionHandle,
    LedgerClient,
    BillboardClient,
    call_with_timeout,
)
from .retry import Backoff, poll_until

__all__ = [
    "BillboardError",
    "NoHealthyHostError",
    "RemoteCallError",
    "RemoteTimeoutError",
    "TicketAlreadyResolvedError",
    "PurchaseError",
    "NotSignedInError",
    "InvalidLinkError",
    "InvalidRegionError",
    "PurchaseInProgressError",
    "InsufficientBalanceError",
    "PartialCommitError",
    "Identity",
    "ProtocolVersion",
    "HttpTransport",
    "ConnectionHandle",
    "LedgerClient",
    "BillboardClient",
    "call_with_timeout",
    "Backoff",
    "poll_until",
]
