"""
Shared fixtures: an in-memory replicated gateway standing in for the
boundary hosts, plus wired services on top of it.

FakeGateway holds one ledger and one billboard (replicated state) and
hands out one FakeTransport per host. Failures are injected per host and
per method; every call is recorded so tests can assert on call counts and
ordering.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

import pytest

from core.exceptions import RemoteCallError
from core.remote import Identity
from models.session import SessionContext
from services.balance_tracker import BalanceTracker
from services.host_selector import HostSelector
from services.notifier import Notifier


HOSTS = ["https://host-a.test", "https://host-b.test", "https://host-c.test"]
LEDGER_ID = "ledger-test"
BILLBOARD_ID = "billboard-test"
RECEIVER = "receiver-test"
ALICE = "alice-principal"


class FakeTransport:
    """Transport bound to one host of a FakeGateway."""

    def __init__(self, gateway: "FakeGateway", host: str):
        self.gateway = gateway
        self.host = host

    def call(self, canister_id, method, args, kind="query", identity=None):
        return self.gateway.handle(self.host, canister_id, method, list(args), kind, identity)

    def close(self):
        pass


class FakeGateway:
    """
    Replicated ledger + billboard reachable through several hosts.

    Attributes:
        calls: (host, method, kind) for every call, in order
        transfers: icrc1_transfer argument records, in order
        transfer_script: replies (dicts) or exceptions returned by
            icrc1_transfer before the default ledger logic applies
        delays: seconds to sleep before answering, per method
        overrides: per-method handlers replacing the default logic
    """

    def __init__(self, width: int = 100, height: int = 100):
        self.width = width
        self.height = height

        self.fee = 10_000
        self.balances: Dict[str, int] = {}
        self.next_block = 1

        self.canvas: Dict[int, int] = {}
        self.links: Dict[int, str] = {}
        self.max_chunk_cells: Optional[int] = None
        self.link_lag_reads = 0

        self.down: set = set()
        self._rules: List[Dict[str, Any]] = []
        self.transfer_script: deque = deque()
        self.delays: Dict[str, float] = {}
        self.overrides: Dict[str, Callable] = {}

        self.calls: List[tuple] = []
        self.transfers: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def transport(self, host: str) -> FakeTransport:
        return FakeTransport(self, host)

    def fail(self, method: str, host: Optional[str] = None, times: Optional[int] = None, kind: Optional[str] = None):
        """Make ``method`` fail (on ``host`` only, ``times`` times, for ``kind`` only)."""
        self._rules.append({"method": method, "host": host, "times": times, "kind": kind})

    def calls_to(self, method: str, host: Optional[str] = None) -> List[tuple]:
        return [c for c in self.calls if c[1] == method and (host is None or c[0] == host)]

    def hosts_called(self, method: str) -> List[str]:
        return [c[0] for c in self.calls_to(method)]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _should_fail(self, host: str, method: str, kind: str) -> bool:
        for rule in self._rules:
            if rule["method"] != method:
                continue
            if rule["host"] is not None and rule["host"] != host:
                continue
            if rule["kind"] is not None and rule["kind"] != kind:
                continue
            if rule["times"] is None:
                return True
            if rule["times"] > 0:
                rule["times"] -= 1
                return True
        return False

    def handle(self, host, canister_id, method, args, kind, identity):
        if method in self.delays:
            time.sleep(self.delays[method])

        with self._lock:
            self.calls.append((host, method, kind))

            if host in self.down:
                raise RemoteCallError(method, host, "transport error: connection refused")
            if self._should_fail(host, method, kind):
                raise RemoteCallError(method, host, "injected failure")

            handler = self.overrides.get(method) or getattr(self, "_" + method)
            return handler(args, identity)

    # Ledger

    def _icrc1_symbol(self, args, identity):
        return "ICP"

    def _icrc1_decimals(self, args, identity):
        return 8

    def _icrc1_fee(self, args, identity):
        return self.fee

    def _icrc1_metadata(self, args, identity):
        return [["icrc1:symbol", {"Text": "ICP"}], ["icrc1:fee", {"Nat": self.fee}]]

    def _icrc1_balance_of(self, args, identity):
        return self.balances.get(args[0]["account"]["owner"], 0)

    def _icrc1_transfer(self, args, identity):
        arg = args[0]
        self.transfers.append(arg)

        if self.transfer_script:
            reply = self.transfer_script.popleft()
            if isinstance(reply, Exception):
                raise reply
            return reply

        fee = arg["fee"][0] if arg["fee"] else self.fee
        if fee != self.fee:
            return {"Err": {"BadFee": {"expected_fee": self.fee}}}

        sender = identity.principal if identity else None
        total = arg["amount"] + fee
        available = self.balances.get(sender, 0)
        if available < total:
            return {"Err": {"InsufficientFunds": {"balance": available}}}

        self.balances[sender] = available - total
        receiver = arg["to"]["owner"]
        self.balances[receiver] = self.balances.get(receiver, 0) + arg["amount"]

        block = self.next_block
        self.next_block += 1
        return {"Ok": block}

    # Billboard

    def _get_canvas_chunk(self, args, identity):
        x, y, w, h = args
        if self.max_chunk_cells is not None and w * h > self.max_chunk_cells:
            raise RemoteCallError("get_canvas_chunk", "gateway", "reply too large")
        return [
            self.canvas.get((y + row) * self.width + (x + col), 0)
            for row in range(h)
            for col in range(w)
        ]

    def _link_for_pixel(self, args, identity):
        if self.link_lag_reads > 0:
            self.link_lag_reads -= 1
            return []
        link = self.links.get(args[0])
        return [link] if link else []

    def _claim_pixels(self, args, identity):
        indices, opt_link = args
        for index in indices:
            if opt_link:
                self.links[index] = opt_link[0]
        return None

    def _paint(self, args, identity):
        for pair in args[0]:
            self.canvas[pair["index"]] = pair["color"]
        return None

    def _claim_region(self, args, identity):
        rect, opt_link = args
        for y in range(rect["y0"], rect["y1"] + 1):
            for x in range(rect["x0"], rect["x1"] + 1):
                if opt_link:
                    self.links[y * self.width + x] = opt_link[0]
        return None

    def _paint_region(self, args, identity):
        rect, colors = args
        i = 0
        for y in range(rect["y0"], rect["y1"] + 1):
            for x in range(rect["x0"], rect["x1"] + 1):
                self.canvas[y * self.width + x] = colors[i]
                i += 1
        return None


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def hosts():
    return list(HOSTS)


@pytest.fixture
def gateway():
    """Fresh replicated gateway; Alice starts with 5 tokens."""
    gw = FakeGateway()
    gw.balances[ALICE] = 500_000_000
    return gw


@pytest.fixture
def clock():
    """Manually advanced monotonic clock: clock.now += seconds."""
    class Clock:
        now = 1000.0

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def session_context(clock):
    return SessionContext(clock=clock)


@pytest.fixture
def alice():
    return Identity(principal=ALICE)


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def selector(gateway, session_context):
    return HostSelector(
        HOSTS,
        session_context,
        LEDGER_ID,
        BILLBOARD_ID,
        probe_timeout_seconds=2.0,
        transport_factory=gateway.transport,
    )


@pytest.fixture
def balance_tracker(session_context, selector, notifier):
    return BalanceTracker(session_context, selector, notifier, balance_timeout_seconds=2.0, probe_timeout_seconds=2.0)


@pytest.fixture
def signed_in(session_context, alice, balance_tracker):
    """Alice signed in with her balance loaded."""
    session_context.on_sign_in(alice)
    assert balance_tracker.refresh(hard_retry=True)
    return alice
