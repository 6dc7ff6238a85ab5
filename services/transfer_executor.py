"""
Ledger transfer with fee discovery, clock-skew correction and retry.

One logical payment = one call to TransferExecutor.transfer(). Inside, the
ledger call is attempted at most twice: the first attempt, plus at most one
recovery attempt chosen by what went wrong.

    BadFee                    -> retry once with the ledger's fee (timestamped)
    CreatedInFuture / TooOld  -> retry once without created_at_time
    TemporarilyUnavailable    -> pause, retry once without created_at_time
    InsufficientFunds         -> terminal
    Duplicate                 -> terminal, not an error ("already submitted")
    other rejection           -> terminal, ledger text shown verbatim
    transport exception       -> one attempt without created_at_time; terminal after

The only success is {"Ok": block_index}.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from core.exceptions import RemoteCallError
from core.remote import LedgerClient
from core.retry import Backoff
from models.transfer import TransferReceipt, TransferRejection
from logging_config import get_logger


logger = get_logger(__name__)


class FeeOracle:
    """
    Cached ledger fee.

    Sources in order: icrc1_fee, the ``icrc1:fee`` entry of icrc1_metadata,
    then a configured constant.
    """

    def __init__(self, fallback_fee_e8s: int = 10_000, timeout_seconds: Optional[float] = None):
        self._fallback = fallback_fee_e8s
        self._timeout = timeout_seconds
        self._cached: Optional[int] = None

    @property
    def cached(self) -> Optional[int]:
        return self._cached

    def remember(self, fee: int) -> None:
        self._cached = int(fee)

    def current(self, ledger: LedgerClient, force: bool = False) -> int:
        if self._cached is not None and not force:
            return self._cached

        try:
            fee = ledger.fee(timeout=self._timeout)
            self._cached = fee
            return fee
        except RemoteCallError as e:
            logger.warning(f"[FEE] icrc1_fee failed: {e}")

        try:
            for key, value in ledger.metadata(timeout=self._timeout):
                if key.lower() == "icrc1:fee" and isinstance(value, dict) and "Nat" in value:
                    fee = int(value["Nat"])
                    self._cached = fee
                    return fee
        except (RemoteCallError, TypeError, ValueError) as e:
            logger.warning(f"[FEE] icrc1_metadata failed: {e}")

        logger.warning(f"[FEE] using fallback fee {self._fallback}")
        self._cached = self._fallback
        return self._fallback


class TransferFailureKind(Enum):
    REJECTED = "rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    DUPLICATE = "duplicate"
    TRANSPORT = "transport"


@dataclass(frozen=True)
class TransferAttempt:
    """
    Outcome of TransferExecutor.transfer().

    Exactly one of ``receipt`` / ``failure`` is set.
    """

    receipt: Optional[TransferReceipt] = None
    failure: Optional[TransferFailureKind] = None
    message: str = ""
    rejection: Optional[TransferRejection] = None

    @property
    def ok(self) -> bool:
        return self.receipt is not None

    @property
    def block_index(self) -> Optional[int]:
        return self.receipt.block_index if self.receipt else None

    @property
    def is_error(self) -> bool:
        """Duplicate submissions fail closed but are not errors."""
        return self.failure is not None and self.failure is not TransferFailureKind.DUPLICATE


class TransferExecutor:
    """
    Sends one payment to the billboard's receiver account.
    """

    def __init__(
        self,
        receiver_principal: str,
        fee_oracle: FeeOracle,
        transient_backoff: Backoff = Backoff.fixed(0.4),
        clock_ns: Callable[[], int] = time.time_ns,
        call_timeout_seconds: Optional[float] = None
    ):
        self._receiver = receiver_principal
        self._fees = fee_oracle
        self._transient_backoff = transient_backoff
        self._clock_ns = clock_ns
        self._timeout = call_timeout_seconds

    def transfer(self, ledger: LedgerClient, amount: int, fee_estimate: int) -> TransferAttempt:
        """
        Pay ``amount`` plus fee.

        Args:
            ledger: Ledger client on the current connection
            amount: Amount in e8s (excluding fee)
            fee_estimate: Fee to offer on the first attempt

        Returns:
            TransferAttempt with a receipt, or a terminal failure
        """
        fee = fee_estimate
        logger.info(f"[PAY] transfer {amount} e8s (fee {fee}) via {ledger.host}")

        try:
            reply = self._send(ledger, amount, fee, with_time=True)
        except RemoteCallError as e:
            logger.error(f"[PAY] icrc1_transfer threw: {e}")
            return self._fallback_after_exception(ledger, amount, fee)

        if "Ok" in reply:
            return self._success(reply, amount, fee)

        rejection = TransferRejection.from_variant(reply.get("Err"))
        logger.warning(f"[PAY] icrc1_transfer Err (with time): {rejection.describe()}")

        if rejection.tag == TransferRejection.BAD_FEE:
            fee = rejection.expected_fee
            if fee is None:
                fee = self._fees.current(ledger, force=True)
            self._fees.remember(fee)
            logger.info(f"[PAY] retrying with ledger fee {fee}")
            return self._retry(ledger, amount, fee, with_time=True)

        if rejection.is_clock_skew:
            logger.info("[PAY] clock skew, retrying without created_at_time")
            return self._retry(ledger, amount, fee, with_time=False)

        if rejection.tag == TransferRejection.TEMPORARILY_UNAVAILABLE:
            self._transient_backoff.sleep(0)
            logger.info("[PAY] ledger temporarily unavailable, retrying once")
            return self._retry(ledger, amount, fee, with_time=False)

        return self._terminal(rejection)

    def _send(self, ledger: LedgerClient, amount: int, fee: int, with_time: bool) -> Dict[str, Any]:
        created_at = self._clock_ns() if with_time else None
        return ledger.transfer(
            self._receiver,
            amount,
            fee,
            created_at_time=created_at,
            timeout=self._timeout,
        )

    def _retry(self, ledger: LedgerClient, amount: int, fee: int, with_time: bool) -> TransferAttempt:
        try:
            reply = self._send(ledger, amount, fee, with_time=with_time)
        except RemoteCallError as e:
            logger.error(f"[PAY] retry threw: {e}")
            return TransferAttempt(
                failure=TransferFailureKind.TRANSPORT,
                message=f"Transfer failed (network/decoding): {e.reason}",
            )

        if "Ok" in reply:
            return self._success(reply, amount, fee)
        return self._terminal(TransferRejection.from_variant(reply.get("Err")))

    def _fallback_after_exception(self, ledger: LedgerClient, amount: int, fee: int) -> TransferAttempt:
        try:
            reply = self._send(ledger, amount, fee, with_time=False)
        except RemoteCallError as e:
            logger.error(f"[PAY] fallback threw: {e}")
            return TransferAttempt(
                failure=TransferFailureKind.TRANSPORT,
                message=f"Transfer failed (network/decoding): {e.reason}",
            )

        if "Ok" in reply:
            return self._success(reply, amount, fee)

        rejection = TransferRejection.from_variant(reply.get("Err"))
        return TransferAttempt(
            failure=TransferFailureKind.REJECTED,
            message=f"Ledger rejected transfer: {rejection.describe()}",
            rejection=rejection,
        )

    @staticmethod
    def _success(reply: Dict[str, Any], amount: int, fee: int) -> TransferAttempt:
        block_index = int(reply["Ok"])
        logger.info(f"[PAY OK] block_index={block_index} amount={amount} fee={fee}")
        return TransferAttempt(receipt=TransferReceipt(block_index, amount, fee))

    @staticmethod
    def _terminal(rejection: TransferRejection) -> TransferAttempt:
        if rejection.tag == TransferRejection.INSUFFICIENT_FUNDS:
            return TransferAttempt(
                failure=TransferFailureKind.INSUFFICIENT_FUNDS,
                message="Ledger says: Insufficient funds (amount + fee).",
                rejection=rejection,
            )

        if rejection.tag == TransferRejection.DUPLICATE:
            logger.info(f"[PAY] duplicate of block {rejection.duplicate_of}")
            return TransferAttempt(
                failure=TransferFailureKind.DUPLICATE,
                message="Payment already submitted (duplicate). Check your wallet history.",
                rejection=rejection,
            )

        return TransferAttempt(
            failure=TransferFailureKind.REJECTED,
            message=f"Ledger rejected transfer: {rejection.describe()}",
            rejection=rejection,
        )
