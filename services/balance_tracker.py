"""
Ledger balance tracking with hard retry and optimistic adjustments.

The tracker keeps SessionContext.balance_e8s in step with the ledger:

    refresh(hard_retry=False)  - one attempt on the current connection
    refresh(hard_retry=True)   - on failure, HostSelector.reconnect() to each
                                 untried host in order until one answers
    start_polling()            - background refresh loop (every 15 s, idle
                                 while nobody is signed in)

Per host, two read strategies are tried in order:
    1. icrc1_balance_of as a replica query on the current client
    2. the same call through a freshly constructed client on the same host,
       sent as a certified (update) call

refresh() never raises: failures mark the balance status FAILED and are
reported through the Notifier.

Optimistic adjustments use tickets: begin_optimistic() applies the change
immediately, and the ticket must later be resolved by exactly one commit()
or rollback(). Rollback restores the exact pre-adjustment value.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional

from core.exceptions import BillboardError, NoHealthyHostError, RemoteCallError, TicketAlreadyResolvedError
from core.remote import ConnectionHandle, Identity, LedgerClient
from core.retry import Backoff
from models.session import BalanceStatus, BalanceTicket, SessionContext, TicketState
from logging_config import get_logger, redact_principal, set_thread_name
from .host_selector import HostSelector
from .notifier import Notifier


logger = get_logger(__name__)


class BalanceTracker:
    """
    Maintains the signed-in user's ledger balance.

    Attributes:
        poll_interval_seconds: Time between background refreshes
        is_polling: Whether the background thread is active
    """

    def __init__(
        self,
        session: SessionContext,
        selector: HostSelector,
        notifier: Optional[Notifier] = None,
        balance_timeout_seconds: float = 3.0,
        probe_timeout_seconds: float = 2.5,
        host_backoff: Backoff = Backoff.none(),
        poll_interval_seconds: float = 15.0
    ):
        self._session = session
        self._selector = selector
        self._notifier = notifier or Notifier()
        self._balance_timeout = balance_timeout_seconds
        self._probe_timeout = probe_timeout_seconds
        self._host_backoff = host_backoff
        self._poll_interval = poll_interval_seconds

        # Background polling
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._consecutive_failures = 0

    @property
    def balance_e8s(self) -> int:
        with self._session.lock:
            return self._session.balance_e8s

    @property
    def poll_interval_seconds(self) -> float:
        return self._poll_interval

    @property
    def is_polling(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ==================================================================
    # Refresh
    # ==================================================================

    def refresh(self, hard_retry: bool = False, notify: bool = True) -> bool:
        """
        Re-read the balance from the ledger.

        Args:
            hard_retry: Rotate through all hosts on failure (after sign-in
                and after payment)
            notify: Report a final failure through the Notifier

        Returns:
            True if a fresh balance was stored
        """
        with self._session.lock:
            identity = self._session.identity
            generation = self._session.generation

        if identity is None:
            return False

        self._session.set_balance_status(BalanceStatus.LOADING, generation)

        try:
            if hard_retry:
                value = self._read_with_rotation(identity)
            else:
                value = self._read_on(self._current_connection(identity), identity)
        except BillboardError as e:
            logger.error(f"[BALANCE] refresh failed: {e}")
            self._fail(generation, e.message, notify)
            return False
        except Exception as e:
            logger.exception(f"[BALANCE] unexpected refresh error: {e}")
            self._fail(generation, str(e), notify)
            return False

        if not self._session.store_balance(value, generation):
            logger.info("[BALANCE] session changed during refresh, result discarded")
            return False
        return True

    def _fail(self, generation: int, reason: str, notify: bool) -> None:
        self._session.set_balance_status(BalanceStatus.FAILED, generation)
        if notify:
            self._notifier.error(f"Balance refresh failed: {reason}")

    def _current_connection(self, identity: Identity) -> ConnectionHandle:
        with self._session.lock:
            handle = self._session.connection
        if handle is None or handle.identity != identity:
            handle = self._selector.connect(identity)
        return handle

    def _read_with_rotation(self, identity: Identity) -> int:
        tried: List[str] = []
        with self._session.lock:
            handle = self._session.connection
        if handle is None or handle.identity != identity:
            # NoHealthyHostError here is terminal: every host was just probed
            handle = self._selector.reconnect(identity, tried)
        else:
            tried.append(handle.host)
        attempt = 0

        while True:
            try:
                value = self._read_on(handle, identity)
                if attempt:
                    logger.info(f"[BALANCE:rotated] host={handle.host} e8s={value}")
                return value
            except BillboardError as e:
                logger.warning(f"[BALANCE] read failed on {handle.host}: {e}")
                last_error: BillboardError = e

            self._host_backoff.sleep(attempt)
            attempt += 1
            try:
                handle = self._selector.reconnect(identity, tried)
            except NoHealthyHostError:
                logger.warning(f"[BALANCE] no untried host left after {tried}")
                raise last_error

    def _read_on(self, handle: ConnectionHandle, identity: Identity) -> int:
        ledger = handle.ledger()
        self._ensure_ready(ledger)

        try:
            value = ledger.balance_of(identity.principal, timeout=self._balance_timeout)
            logger.info(f"[BALANCE] host={handle.host} principal={redact_principal(identity.principal)} e8s={value}")
            return value
        except RemoteCallError as primary_error:
            logger.warning(f"[BALANCE] primary read failed on {handle.host}: {primary_error}")

        alternate = self._selector.open(handle.host, identity).ledger()
        try:
            value = alternate.balance_of(identity.principal, certified=True, timeout=self._balance_timeout)
        except RemoteCallError as fallback_error:
            logger.warning(f"[BALANCE] both primary and fallback failed on {handle.host}")
            raise fallback_error

        logger.info(f"[BALANCE:fallback] host={handle.host} principal={redact_principal(identity.principal)} e8s={value}")
        return value

    def _ensure_ready(self, ledger: LedgerClient) -> None:
        symbol = ledger.symbol(timeout=self._probe_timeout)
        decimals = ledger.decimals(timeout=self._probe_timeout)
        logger.debug(f"[ICRC1] host={ledger.host} symbol={symbol} decimals={decimals}")

    # ==================================================================
    # Optimistic adjustments
    # ==================================================================

    def begin_optimistic(self, delta: int) -> BalanceTicket:
        """
        Apply ``delta`` to the local balance now (negative = deduction).
        """
        with self._session.lock:
            previous = self._session.balance_e8s
            self._session.balance_e8s = previous + delta
            ticket = BalanceTicket(delta=delta, previous=previous, generation=self._session.generation)

        logger.debug(f"[BALANCE] optimistic ticket {ticket.ticket_id}: {previous} -> {previous + delta}")
        return ticket

    def commit(self, ticket: BalanceTicket, settled_delta: Optional[int] = None) -> None:
        """
        Keep an optimistic adjustment.

        Args:
            ticket: Open ticket
            settled_delta: Actual change when it differs from the estimate
                (e.g. the ledger demanded a different fee)
        """
        with self._session.lock:
            self._resolve(ticket, TicketState.COMMITTED)
            if settled_delta is not None and settled_delta != ticket.delta:
                if ticket.generation == self._session.generation:
                    self._session.balance_e8s += settled_delta - ticket.delta

    def rollback(self, ticket: BalanceTicket) -> None:
        """Restore the balance to exactly what it was before the ticket."""
        with self._session.lock:
            self._resolve(ticket, TicketState.ROLLED_BACK)
            if ticket.generation == self._session.generation:
                self._session.balance_e8s = ticket.previous

        logger.info(f"[BALANCE] ticket {ticket.ticket_id} rolled back to {ticket.previous}")

    def optimistic_adjust(self, delta: int) -> Callable[[], None]:
        """Ticket-backed adjustment returning a single-use ``revert``."""
        ticket = self.begin_optimistic(delta)
        return lambda: self.rollback(ticket)

    @staticmethod
    def _resolve(ticket: BalanceTicket, state: TicketState) -> None:
        if not ticket.is_open:
            raise TicketAlreadyResolvedError(ticket.ticket_id, ticket.state.value)
        ticket.state = state

    # ==================================================================
    # Background polling
    # ==================================================================

    def start_polling(self) -> None:
        """
        Start the background refresh thread.

        Safe to call multiple times - only starts if not already running.
        """
        if self.is_polling:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="Balance", daemon=True)
        self._thread.start()
        logger.info(f"Balance polling started (every {self._poll_interval:.0f}s)")

    def stop_polling(self) -> None:
        """Signal the poller to stop and wait for it."""
        if self._thread is None:
            return

        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("Balance poller did not stop cleanly")

        self._thread = None
        logger.info("Balance polling stopped")

    def _poll_loop(self) -> None:
        set_thread_name("Balance")

        while not self._stop_event.wait(timeout=self._poll_interval):
            if not self._session.is_signed_in:
                self._consecutive_failures = 0
                continue

            if self.refresh(hard_retry=False, notify=False):
                if self._consecutive_failures > 0:
                    logger.info(f"Balance polling recovered after {self._consecutive_failures} failures")
                self._consecutive_failures = 0
                continue

            self._consecutive_failures += 1
            if self._consecutive_failures == 1:
                logger.warning("Balance poll failed")
            elif self._consecutive_failures <= 3:
                logger.error(f"Balance poll failed ({self._consecutive_failures} consecutive)")
            elif self._consecutive_failures % 5 == 0:
                logger.error(f"Balance poll still failing ({self._consecutive_failures} consecutive)")
