"""
Process-wide session state.

SessionContext is the single owner of everything that lives from sign-in to
sign-out: identity, current connection, sticky host bias, and the local
balance. All fields are read and written under one lock, and sign-in/out
reset them together.

Thread Safety:
    - Purchase threads, the balance poller and Flask request threads all
      touch SessionContext; every access goes through its lock
    - ``generation`` changes on every sign-in/out so a slow refresh that
      finishes after sign-out can detect that its result is stale
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from core.remote import ConnectionHandle, Identity
from .paint import PendingPreview


class BalanceStatus(Enum):
    """UI-facing status of the last balance refresh."""

    UNKNOWN = "unknown"
    LOADING = "loading"
    OK = "ok"
    FAILED = "failed"


@dataclass(frozen=True)
class StickyHost:
    """Temporary bias toward the host that just accepted a write."""

    host: str
    expiry: float

    def is_active(self, now: float) -> bool:
        return now < self.expiry


class TicketState(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled back"


_ticket_ids = itertools.count(1)


@dataclass
class BalanceTicket:
    """
    One optimistic balance adjustment.

    Created by BalanceTracker.begin_optimistic(); resolved exactly once by
    commit() or rollback().
    """

    delta: int
    previous: int
    generation: int
    ticket_id: int = field(default_factory=lambda: next(_ticket_ids))
    state: TicketState = TicketState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state is TicketState.OPEN


class SessionContext:
    """
    Identity, connection, sticky host and balance for the signed-in user.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.RLock()
        self._clock = clock
        self._generation = 0
        self._reset()

    def _reset(self) -> None:
        self.identity: Optional[Identity] = None
        self.connection: Optional[ConnectionHandle] = None
        self.sticky: Optional[StickyHost] = None
        self.balance_e8s: int = 0
        self.balance_status = BalanceStatus.UNKNOWN
        self.balance_updated_at: Optional[float] = None
        self.pending_preview: Optional[PendingPreview] = None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def is_signed_in(self) -> bool:
        with self._lock:
            return self.identity is not None

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def on_sign_in(self, identity: Identity) -> int:
        """Reset all state for a new identity. Returns the new generation."""
        with self._lock:
            self._reset()
            self.identity = identity
            self._generation += 1
            return self._generation

    def on_sign_out(self) -> None:
        with self._lock:
            self._reset()
            self._generation += 1

    # ------------------------------------------------------------------
    # Connection and sticky host
    # ------------------------------------------------------------------

    def set_connection(self, handle: ConnectionHandle) -> None:
        with self._lock:
            self.connection = handle

    def mark_sticky(self, host: str, window_seconds: float) -> None:
        with self._lock:
            self.sticky = StickyHost(host, self._clock() + window_seconds)

    def active_sticky_host(self) -> Optional[str]:
        """The sticky host if its window has not expired (pure time check)."""
        with self._lock:
            if self.sticky and self.sticky.is_active(self._clock()):
                return self.sticky.host
            return None

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    def store_balance(self, value: int, generation: int) -> bool:
        """
        Store a freshly read balance.

        Ignored (returns False) when the session changed since the read
        started.
        """
        with self._lock:
            if generation != self._generation:
                return False
            self.balance_e8s = int(value)
            self.balance_status = BalanceStatus.OK
            self.balance_updated_at = self._clock()
            return True

    def set_balance_status(self, status: BalanceStatus, generation: int) -> None:
        with self._lock:
            if generation == self._generation:
                self.balance_status = status

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "signed_in": self.identity is not None,
                "principal": self.identity.principal if self.identity else None,
                "host": self.connection.host if self.connection else None,
                "sticky_host": self.active_sticky_host(),
                "balance_e8s": self.balance_e8s,
                "balance_status": self.balance_status.value,
                "has_preview": self.pending_preview is not None,
            }
