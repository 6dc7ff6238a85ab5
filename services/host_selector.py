"""
Boundary host selection with sticky-host bias.

connect() returns a ConnectionHandle for the first host that answers a
cheap liveness probe (ledger ``icrc1_symbol`` with a short advisory timeout).

Order of attempts within one connect() call:
    1. The sticky host, if one is set and its window has not expired
    2. Every configured host in list order, skipping ``exclude_host``

reconnect() is the hard-retry variant: it skips every host already tried
by the caller, so a rotation visits each host at most once.

Probing is sequential: a later host never wins against an earlier one, and
the ordered pass visits each configured host at most once. A sticky host that
just failed is probed again in its list position.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from core.exceptions import NoHealthyHostError, RemoteCallError
from core.remote import ConnectionHandle, HttpTransport, Identity, ProtocolVersion
from models.session import SessionContext
from logging_config import get_logger


logger = get_logger(__name__)


class HostSelector:
    """
    Probes the ordered boundary host list and hands out connections.

    Attributes:
        hosts: Ordered candidate hosts (earlier = preferred)
    """

    def __init__(
        self,
        hosts: Sequence[str],
        session: SessionContext,
        ledger_canister_id: str,
        billboard_canister_id: str,
        protocol: ProtocolVersion = ProtocolVersion.V1,
        probe_timeout_seconds: float = 2.5,
        transport_factory: Optional[Callable[[str], object]] = None
    ):
        if not hosts:
            raise ValueError("At least one boundary host is required")

        self._hosts: List[str] = list(hosts)
        self._session = session
        self._ledger_canister_id = ledger_canister_id
        self._billboard_canister_id = billboard_canister_id
        self._protocol = protocol
        self._probe_timeout = probe_timeout_seconds
        self._transport_factory = transport_factory or HttpTransport

        logger.info(
            f"HostSelector initialized: {len(self._hosts)} hosts, protocol={protocol.value}"
        )

    @property
    def hosts(self) -> List[str]:
        return list(self._hosts)

    def open(self, host: str, identity: Optional[Identity] = None) -> ConnectionHandle:
        """
        Build a handle for ``host`` with a brand new transport (no probe).
        """
        return ConnectionHandle(
            host=host,
            identity=identity,
            protocol=self._protocol,
            ledger_canister_id=self._ledger_canister_id,
            billboard_canister_id=self._billboard_canister_id,
            transport=self._transport_factory(host),
        )

    def probe(self, handle: ConnectionHandle) -> None:
        """
        Liveness check; raises RemoteCallError (incl. timeout) on failure.
        """
        handle.ledger().symbol(timeout=self._probe_timeout)

    def connect(
        self,
        identity: Optional[Identity] = None,
        exclude_host: Optional[str] = None,
        remember: bool = True
    ) -> ConnectionHandle:
        """
        Return a working connection.

        Args:
            identity: Caller identity, None for anonymous reads
            exclude_host: Host to skip in the ordered probe (just failed)
            remember: Record the winner as the session's current connection

        Returns:
            ConnectionHandle bound to the first healthy host

        Raises:
            NoHealthyHostError: Every candidate failed
        """
        candidates: List[str] = []
        sticky = self._session.active_sticky_host()
        if sticky:
            candidates.append(sticky)
        candidates.extend(host for host in self._hosts if host != exclude_host)

        return self._first_healthy(candidates, identity, remember, probed=[])

    def reconnect(
        self,
        identity: Optional[Identity],
        tried: List[str],
        remember: bool = True
    ) -> ConnectionHandle:
        """
        Move to a host that is not in ``tried`` (hard retry).

        The sticky host goes first when it has not been tried yet, then the
        remaining hosts in list order. Every host probed here, including the
        winner, is appended to ``tried`` so repeated calls never revisit one.

        Raises:
            NoHealthyHostError: No untried host answered
        """
        candidates: List[str] = []
        sticky = self._session.active_sticky_host()
        if sticky and sticky not in tried:
            candidates.append(sticky)
        candidates.extend(host for host in self._hosts if host not in tried and host not in candidates)

        return self._first_healthy(candidates, identity, remember, probed=tried)

    def mark_sticky(self, host: str, window_seconds: float) -> None:
        """Prefer ``host`` for the next ``window_seconds``."""
        self._session.mark_sticky(host, window_seconds)
        logger.info(f"[HOST] sticky host {host} for {window_seconds:.0f}s")

    def _first_healthy(
        self,
        candidates: List[str],
        identity: Optional[Identity],
        remember: bool,
        probed: List[str]
    ) -> ConnectionHandle:
        last_error: Optional[BaseException] = None

        for position, host in enumerate(candidates):
            probed.append(host)
            try:
                handle = self.open(host, identity)
                self.probe(handle)
            except RemoteCallError as e:
                last_error = e
                logger.warning(f"[HOST] probe {position + 1}/{len(candidates)} failed on {host}: {e}")
                continue
            return self._accept(handle, remember)

        logger.error(f"[HOST] all boundary hosts failed: tried {probed}")
        raise NoHealthyHostError(probed, last_error)

    def _accept(self, handle: ConnectionHandle, remember: bool) -> ConnectionHandle:
        if remember:
            self._session.set_connection(handle)
        logger.debug(f"[HOST] using {handle.host}")
        return handle
