"""
Custom exceptions for the Pixel Billboard client.

Exception Hierarchy:
    BillboardError (base)
    ├── NoHealthyHostError         - No boundary host answered the probe (connectivity)
    ├── RemoteCallError            - A host rejected or failed a remote call
    │   └── RemoteTimeoutError     - Advisory timeout elapsed (outcome unknown)
    ├── TicketAlreadyResolvedError - Optimistic balance ticket resolved twice
    └── PurchaseError              - Purchase could not be completed
        ├── NotSignedInError         - No identity established
        ├── InvalidLinkError         - Link is not a strict http(s) URL
        ├── InvalidRegionError       - Region empty or outside the canvas
        ├── PurchaseInProgressError  - Another purchase holds the single-flight guard
        ├── InsufficientBalanceError - Balance below cost + fee (affordability)
        └── PartialCommitError       - Paid, but claim/paint did not complete

Usage:
    Connectivity and affordability errors leave no state behind.
    PartialCommitError is the only error raised after money has moved; callers
    must NOT roll back the local balance when they see it.
"""

from typing import Optional, Dict, Any


class BillboardError(Exception):
    """
    Base exception for all Pixel Billboard errors.

    Carries a human-readable message plus a details dict for debugging and
    for the JSON error bodies returned by the API.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# TRANSPORT / CONNECTIVITY ERRORS
# =============================================================================

class NoHealthyHostError(BillboardError):
    """
    Every boundary host failed the liveness probe.

    Terminal for the current operation; the user must retry later.
    """

    def __init__(self, tried_hosts: list, last_error: Optional[BaseException] = None):
        message = f"All boundary hosts failed ({len(tried_hosts)} tried)"
        details = {
            "tried_hosts": list(tried_hosts),
            "last_error": str(last_error) if last_error else None,
            "resolution": "Check network connectivity and try again later",
        }
        super().__init__(message, details)
        self.tried_hosts = list(tried_hosts)
        self.last_error = last_error


class RemoteCallError(BillboardError):
    """
    A remote call failed on a specific host.

    Raised for transport failures (connection refused, HTTP errors, bad JSON)
    and for explicit rejects returned by the gateway.
    """

    def __init__(
        self,
        method: str,
        host: str,
        reason: str,
        reject_code: Optional[int] = None
    ):
        message = f"{method} failed on {host}: {reason}"
        details = {"method": method, "host": host}
        if reject_code is not None:
            details["reject_code"] = reject_code
        super().__init__(message, details)
        self.method = method
        self.host = host
        self.reason = reason
        self.reject_code = reject_code


class RemoteTimeoutError(RemoteCallError):
    """
    The advisory timeout around a remote call elapsed.

    The call itself was NOT cancelled and may still take effect server-side.
    Treat this as "unknown outcome", never as "did not happen".
    """

    def __init__(self, method: str, host: str, timeout_seconds: float):
        super().__init__(method, host, f"timed out after {timeout_seconds:.1f}s")
        self.details["timeout_seconds"] = timeout_seconds
        self.details["resolution"] = "The call may still complete on the backend"
        self.timeout_seconds = timeout_seconds


class TicketAlreadyResolvedError(BillboardError):
    """An optimistic balance ticket was committed or rolled back twice."""

    def __init__(self, ticket_id: int, state: str):
        super().__init__(
            f"Balance ticket {ticket_id} is already {state}",
            {"ticket_id": ticket_id, "state": state},
        )
        self.ticket_id = ticket_id
        self.state = state


# =============================================================================
# PURCHASE ERRORS - surfaced to the user as exactly one notification
# =============================================================================

class PurchaseError(BillboardError):
    """Base class for purchase failures."""

    def __init__(
        self,
        message: str,
        purchase_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        if purchase_id:
            error_details["purchase_id"] = purchase_id
        super().__init__(message, error_details)
        self.purchase_id = purchase_id


class NotSignedInError(PurchaseError):
    def __init__(self):
        super().__init__("Please sign in first.")


class InvalidLinkError(PurchaseError):
    def __init__(self, link: str):
        super().__init__(
            "Please enter a valid link (http/https).",
            details={"link": link},
        )
        self.link = link


class InvalidRegionError(PurchaseError):
    def __init__(self, reason: str):
        super().__init__(f"Invalid region: {reason}")


class PurchaseInProgressError(PurchaseError):
    """Rejected by the single-flight guard; purchases are never queued."""

    def __init__(self):
        super().__init__("A purchase is already in progress.")


class InsufficientBalanceError(PurchaseError):
    """
    Balance is below cost + fee.

    Raised before any state is mutated; the user must fund the account.
    """

    def __init__(self, required_e8s: int, available_e8s: int):
        shortfall = max(0, required_e8s - available_e8s)
        message = f"You need {shortfall / 1e8:.4f} more (incl. fee) to purchase this area."
        details = {
            "required_e8s": required_e8s,
            "available_e8s": available_e8s,
            "shortfall_e8s": shortfall,
            "resolution": "Fund the account and try again",
        }
        super().__init__(message, details=details)
        self.required_e8s = required_e8s
        self.available_e8s = available_e8s
        self.shortfall_e8s = shortfall


class PartialCommitError(PurchaseError):
    """
    Payment was captured but claim/paint did not complete.

    The ledger transfer cannot be reversed by the client, so the local
    balance stays deducted and the anomaly is reported instead.
    """

    def __init__(
        self,
        block_index: int,
        step: str,
        cause: str,
        purchase_id: Optional[str] = None
    ):
        message = (
            f"Payment captured (block {block_index}) but {step} did not complete: {cause}"
        )
        details = {
            "block_index": block_index,
            "step": step,
            "resolution": "Payment is final. Retry the claim or contact support with the block index.",
        }
        super().__init__(message, purchase_id, details)
        self.block_index = block_index
        self.step = step
        self.cause = cause
