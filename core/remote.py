"""
Boundary host transport and typed remote clients.

The ledger and the billboard canister are reached through a JSON gateway on
each boundary host. This module owns everything that touches the wire:

    HttpTransport     - one requests.Session bound to one host
    ConnectionHandle  - immutable (host, identity, protocol, transport) bundle
    LedgerClient      - ICRC-1 ledger calls
    BillboardClient   - canvas reads, claim and paint

ADVISORY TIMEOUTS:
    Every remote call runs through call_with_timeout(). When the timeout
    elapses the caller stops waiting and gets RemoteTimeoutError, but the
    request keeps running on a worker thread and may still take effect on the
    backend. Claim and paint are idempotent, and transfers rely on the
    ledger's duplicate detection, so a retry after a timeout is safe.

PROTOCOL VERSIONS:
    The billboard interface is fixed per deployment and chosen once from
    configuration (ProtocolVersion.V1 or V2). Nothing here probes for
    method names at call time.

Wire format:
    POST {host}/api/v2/canister/{canister_id}/{query|call}
    {"method": "...", "args": [...], "sender": "<principal>|null"}

    -> {"reply": <value>}                          on success
    -> {"reject": {"code": <int>, "message": "..."}} on rejection
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import requests

from .exceptions import RemoteCallError, RemoteTimeoutError
from logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

# Worker pool that runs remote calls so callers can stop waiting on them.
# Abandoned calls keep their worker until the HTTP request returns.
_call_pool = ThreadPoolExecutor(max_workers=32, thread_name_prefix="RemoteCall")


def call_with_timeout(
    fn: Callable[[], T],
    timeout_seconds: Optional[float],
    method: str,
    host: str
) -> T:
    """
    Run ``fn`` and wait at most ``timeout_seconds`` for it.

    The underlying call is not cancelled on timeout.

    Args:
        fn: Zero-argument callable performing the remote call
        timeout_seconds: Advisory timeout (None waits forever)
        method: Remote method name (for the error message)
        host: Host the call was sent to (for the error message)

    Returns:
        Whatever ``fn`` returns

    Raises:
        RemoteTimeoutError: If the timeout elapsed first
        Exception: Anything ``fn`` raised
    """
    future = _call_pool.submit(fn)

    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        logger.warning(f"[TIMEOUT] {method} on {host} after {timeout_seconds}s (call left running)")
        raise RemoteTimeoutError(method, host, timeout_seconds)


class ProtocolVersion(Enum):
    """
    Billboard canister interface version.

    V1: claim_pixels(indices, opt link) / paint(vec {index; color})
    V2: claim_region(rect, opt link) / paint_region(rect, colors)
    """

    V1 = "v1"
    V2 = "v2"

    @classmethod
    def from_config(cls, value: str) -> "ProtocolVersion":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown billboard protocol version: {value!r}")


@dataclass(frozen=True)
class Identity:
    """
    An authenticated caller.

    The identity provider flow happens outside this client; by the time an
    Identity exists the principal is established and ``token`` (if any) is a
    bearer credential accepted by the gateway.
    """

    principal: str
    token: Optional[str] = None


class HttpTransport:
    """
    JSON gateway transport bound to a single boundary host.

    Each instance owns its own requests.Session, so constructing a new
    transport is enough to get a fresh client for the same host.
    """

    def __init__(
        self,
        host: str,
        session: Optional[requests.Session] = None,
        request_timeout: float = 30.0
    ):
        self.host = host.rstrip("/")
        self._session = session or requests.Session()
        self._request_timeout = request_timeout

    def call(
        self,
        canister_id: str,
        method: str,
        args: Sequence[Any],
        kind: str = "query",
        identity: Optional[Identity] = None
    ) -> Any:
        """
        Invoke a canister method and return its decoded reply.

        Args:
            canister_id: Target canister
            method: Method name
            args: Positional arguments (JSON-encodable)
            kind: "query" (replica read) or "call" (certified/update)
            identity: Caller identity, None for anonymous

        Returns:
            The ``reply`` value

        Raises:
            RemoteCallError: Transport failure, HTTP error, bad JSON or reject
        """
        url = f"{self.host}/api/v2/canister/{canister_id}/{kind}"
        body = {
            "method": method,
            "args": list(args),
            "sender": identity.principal if identity else None,
        }
        headers = {"Content-Type": "application/json"}
        if identity and identity.token:
            headers["Authorization"] = f"Bearer {identity.token}"

        try:
            response = self._session.post(url, json=body, headers=headers, timeout=self._request_timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise RemoteCallError(method, self.host, f"transport error: {e}")
        except ValueError as e:
            raise RemoteCallError(method, self.host, f"invalid JSON reply: {e}")

        if not isinstance(payload, dict):
            raise RemoteCallError(method, self.host, "reply is not an object")

        if "reject" in payload:
            reject = payload.get("reject") or {}
            raise RemoteCallError(
                method,
                self.host,
                str(reject.get("message", "rejected")),
                reject_code=reject.get("code"),
            )

        if "reply" not in payload:
            raise RemoteCallError(method, self.host, "reply missing")

        return payload["reply"]

    def close(self) -> None:
        self._session.close()


@dataclass(frozen=True)
class ConnectionHandle:
    """
    Host-bound capability to invoke remote operations.

    Never mutated; HostSelector replaces it on every reconnect.
    """

    host: str
    identity: Optional[Identity]
    protocol: ProtocolVersion
    ledger_canister_id: str
    billboard_canister_id: str
    transport: Any = field(compare=False, repr=False)

    def ledger(self, timeout_seconds: Optional[float] = 30.0) -> "LedgerClient":
        return LedgerClient(self, timeout_seconds)

    def billboard(self, width: int, timeout_seconds: Optional[float] = 30.0) -> "BillboardClient":
        return BillboardClient(self, width, timeout_seconds)

    def call(
        self,
        canister_id: str,
        method: str,
        args: Sequence[Any],
        kind: str = "query",
        timeout_seconds: Optional[float] = None
    ) -> Any:
        return call_with_timeout(
            lambda: self.transport.call(canister_id, method, args, kind, self.identity),
            timeout_seconds,
            method,
            self.host,
        )


def _decode(method: str, host: str, convert: Callable[[Any], T], reply: Any) -> T:
    """Apply ``convert`` to a reply; a malformed reply is a RemoteCallError."""
    try:
        return convert(reply)
    except (TypeError, ValueError) as e:
        raise RemoteCallError(method, host, f"malformed reply {reply!r}: {e}")


def _to_nat(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("expected a natural number, got a boolean")
    number = int(value)
    if number < 0:
        raise ValueError("expected a natural number")
    return number


def _unwrap_opt(value: Any) -> Any:
    """Candid ``opt T`` arrives as [] / [value] / null / value."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


class LedgerClient:
    """ICRC-1 ledger calls over a ConnectionHandle."""

    def __init__(self, handle: ConnectionHandle, timeout_seconds: Optional[float] = 30.0):
        self._handle = handle
        self._timeout = timeout_seconds

    @property
    def host(self) -> str:
        return self._handle.host

    def _call(self, method: str, args: Sequence[Any], kind: str = "query", timeout: Optional[float] = None) -> Any:
        return self._handle.call(
            self._handle.ledger_canister_id,
            method,
            args,
            kind,
            timeout if timeout is not None else self._timeout,
        )

    def symbol(self, timeout: Optional[float] = None) -> str:
        return str(self._call("icrc1_symbol", [], timeout=timeout))

    def decimals(self, timeout: Optional[float] = None) -> int:
        return _decode("icrc1_decimals", self.host, _to_nat, self._call("icrc1_decimals", [], timeout=timeout))

    def fee(self, timeout: Optional[float] = None) -> int:
        return _decode("icrc1_fee", self.host, _to_nat, self._call("icrc1_fee", [], timeout=timeout))

    def metadata(self, timeout: Optional[float] = None) -> List[tuple]:
        reply = self._call("icrc1_metadata", [], timeout=timeout) or []
        return _decode("icrc1_metadata", self.host, lambda r: [(str(key), value) for key, value in r], reply)

    def balance_of(self, owner: str, certified: bool = False, timeout: Optional[float] = None) -> int:
        """
        Balance of the default subaccount of ``owner``.

        ``certified=True`` issues the same call through the update path.
        """
        args = [{"account": {"owner": owner, "subaccount": []}}]
        reply = self._call("icrc1_balance_of", args, kind="call" if certified else "query", timeout=timeout)
        return _decode("icrc1_balance_of", self.host, _to_nat, reply)

    def transfer(
        self,
        to_owner: str,
        amount: int,
        fee: int,
        created_at_time: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Submit an icrc1_transfer.

        Returns:
            The raw variant: {"Ok": block_index} or {"Err": {tag: payload}}
        """
        arg = {
            "from_subaccount": [],
            "to": {"owner": to_owner, "subaccount": []},
            "amount": int(amount),
            "fee": [int(fee)],
            "memo": [],
            "created_at_time": [int(created_at_time)] if created_at_time is not None else [],
        }
        reply = self._call("icrc1_transfer", [arg], kind="call", timeout=timeout)
        if not isinstance(reply, dict):
            raise RemoteCallError("icrc1_transfer", self.host, f"unexpected reply: {reply!r}")
        return reply


class BillboardClient:
    """
    Billboard canister calls over a ConnectionHandle.

    claim() and paint() take a Region and dispatch on the protocol version
    fixed at connection time.
    """

    def __init__(self, handle: ConnectionHandle, width: int, timeout_seconds: Optional[float] = 30.0):
        self._handle = handle
        self._width = width
        self._timeout = timeout_seconds

    @property
    def host(self) -> str:
        return self._handle.host

    @property
    def protocol(self) -> ProtocolVersion:
        return self._handle.protocol

    def _call(self, method: str, args: Sequence[Any], kind: str = "query", timeout: Optional[float] = None) -> Any:
        return self._handle.call(
            self._handle.billboard_canister_id,
            method,
            args,
            kind,
            timeout if timeout is not None else self._timeout,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_canvas_chunk(self, x: int, y: int, w: int, h: int, timeout: Optional[float] = None) -> List[int]:
        """Row-major RGBA colors of the w×h block at (x, y)."""
        reply = self._call("get_canvas_chunk", [x, y, w, h], timeout=timeout)
        colors = _decode("get_canvas_chunk", self.host, lambda r: [int(c) & 0xFFFFFFFF for c in r], reply)
        if len(colors) != w * h:
            raise RemoteCallError(
                "get_canvas_chunk",
                self.host,
                f"expected {w * h} colors, got {len(colors)}",
            )
        return colors

    def link_for_pixel(self, x: int, y: int, timeout: Optional[float] = None) -> Optional[str]:
        reply = _unwrap_opt(self._call("link_for_pixel", [y * self._width + x], timeout=timeout))
        return reply if isinstance(reply, str) else None

    # ------------------------------------------------------------------
    # Writes (idempotent)
    # ------------------------------------------------------------------

    def claim(self, region, link: Optional[str]) -> Any:
        opt_link = [link] if link else []
        if self.protocol is ProtocolVersion.V1:
            return self._call("claim_pixels", [region.indices(self._width), opt_link], kind="call")
        return self._call("claim_region", [region.to_dict(), opt_link], kind="call")

    def paint(self, region, colors: Sequence[int]) -> Any:
        """
        Paint ``region`` with row-major ``colors`` (remote RGBA encoding).
        """
        if len(colors) != region.pixel_count:
            raise ValueError(f"{len(colors)} colors for a {region.pixel_count}-pixel region")

        if self.protocol is ProtocolVersion.V1:
            pairs = [
                {"index": index, "color": int(color)}
                for index, color in zip(region.indices(self._width), colors)
            ]
            return self._call("paint", [pairs], kind="call")
        return self._call("paint_region", [region.to_dict(), [int(c) for c in colors]], kind="call")
