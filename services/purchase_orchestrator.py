"""
Purchase orchestration: pay, then claim, then paint, then verify.

    1. cost = pixels x price, total = cost + fee estimate
    2. balance < total          -> InsufficientBalanceError, nothing touched
    3. single-flight guard + optimistic deduction (BalanceTicket)
    4. transfer                 -> failure: rollback ticket, stop
    5. payment confirmed        -> commit ticket, sticky host (90 s)
    6. claim in batches         -> failure: partial commit, no rollback
    7. paint in batches         -> failure: partial commit, no rollback
    8. best-effort canvas re-read
    9. convergence check (timeout is logged only)
    10. clear preview, success, hard-retry balance refresh, sticky host (60 s)

FINANCIAL SAFETY:
    The transfer is invoked at most once per purchase() call, and claim/paint
    never run without a block index. Once a block index exists nothing is
    rolled back: ledger transfers cannot be reversed by the client, so later
    claim/paint failures become a PARTIAL result carrying the block index,
    and failures in steps 8-10 are logged without changing a COMPLETED result.

The single-flight guard is taken before step 1 and held until the result
exists, so the affordability check always sees the settled balance.

Every terminal outcome produces exactly one notification.
"""

from __future__ import annotations

import threading
import uuid
from typing import Optional
from urllib.parse import urlparse

from core.exceptions import (
    BillboardError,
    InsufficientBalanceError,
    InvalidLinkError,
    InvalidRegionError,
    NotSignedInError,
    PartialCommitError,
    PurchaseInProgressError,
)
from core.remote import BillboardClient, ConnectionHandle
from models.paint import PendingPreview
from models.purchase_result import CommitOutcome, PurchaseResult
from models.region import Region
from models.session import SessionContext
from logging_config import get_logger, get_purchase_logger
from .balance_tracker import BalanceTracker
from .canvas_reader import CanvasReader
from .convergence_verifier import ConvergenceVerifier
from .host_selector import HostSelector
from .notifier import Notifier
from .transfer_executor import FeeOracle, TransferExecutor


logger = get_logger(__name__)


def is_valid_link(link: Optional[str]) -> bool:
    """Absolute http(s) URL with a host and no whitespace."""
    if not link or not isinstance(link, str) or link != link.strip():
        return False
    if any(ch.isspace() for ch in link):
        return False
    try:
        parsed = urlparse(link)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and bool(parsed.hostname)


class PurchaseOrchestrator:
    """
    Runs one purchase at a time.

    purchase() raises PurchaseError subclasses for anything rejected before
    the guard is taken, and returns a PurchaseResult for everything after.
    """

    def __init__(
        self,
        session: SessionContext,
        selector: HostSelector,
        balance: BalanceTracker,
        fees: FeeOracle,
        executor: TransferExecutor,
        canvas: CanvasReader,
        verifier: ConvergenceVerifier,
        notifier: Notifier,
        price_e8s_per_pixel: int = 1_000_000,
        claim_slice: int = 4000,
        paint_slice: int = 2000,
        sticky_after_payment_seconds: float = 90.0,
        sticky_after_commit_seconds: float = 60.0,
        call_timeout_seconds: Optional[float] = 30.0
    ):
        self._session = session
        self._selector = selector
        self._balance = balance
        self._fees = fees
        self._executor = executor
        self._canvas = canvas
        self._verifier = verifier
        self._notifier = notifier
        self._price = price_e8s_per_pixel
        self._claim_slice = claim_slice
        self._paint_slice = paint_slice
        self._sticky_after_payment = sticky_after_payment_seconds
        self._sticky_after_commit = sticky_after_commit_seconds
        self._call_timeout = call_timeout_seconds

        self._guard = threading.Lock()

    @property
    def is_busy(self) -> bool:
        return self._guard.locked()

    @property
    def price_e8s_per_pixel(self) -> int:
        return self._price

    def validate(self, region: Optional[Region], link_url: str, pending_paint: Optional[PendingPreview] = None) -> None:
        """
        Check everything that can be checked without the network.

        Raises:
            NotSignedInError, InvalidLinkError, InvalidRegionError,
            PurchaseInProgressError
        """
        if not self._session.is_signed_in:
            raise NotSignedInError()
        if not is_valid_link(link_url):
            raise InvalidLinkError(link_url)
        if region is None:
            raise InvalidRegionError("select an area first")
        if not region.fits(self._canvas.width, self._canvas.height):
            raise InvalidRegionError(f"{region} is outside the {self._canvas.width}x{self._canvas.height} canvas")
        if pending_paint is not None and pending_paint.region != region:
            raise InvalidRegionError("paint buffer does not match the selected area")
        if self.is_busy:
            raise PurchaseInProgressError()

    def quote(self, region: Region) -> dict:
        """Cost breakdown for ``region`` using the current fee estimate."""
        ledger = self._connection().ledger(self._call_timeout)
        fee = self._fees.current(ledger)
        cost = region.cost(self._price)
        return {"pixels": region.pixel_count, "cost_e8s": cost, "fee_e8s": fee, "total_e8s": cost + fee}

    def _connection(self) -> ConnectionHandle:
        with self._session.lock:
            identity = self._session.identity
            handle = self._session.connection
        if identity is None:
            raise NotSignedInError()
        if handle is None or handle.identity != identity:
            handle = self._selector.connect(identity)
        return handle

    def purchase(
        self,
        region: Optional[Region],
        link_url: str,
        pending_paint: Optional[PendingPreview] = None,
        purchase_id: Optional[str] = None
    ) -> PurchaseResult:
        """
        Buy ``region``, attach ``link_url`` and optionally paint it.

        Args:
            region: Area to buy
            link_url: http(s) link stored with every claimed pixel
            pending_paint: Colors to paint, or None to claim only
            purchase_id: Identifier for logs and results

        Returns:
            PurchaseResult (COMPLETED, PARTIAL or FAILED)

        Raises:
            PurchaseError: Rejected before any state was changed
            NoHealthyHostError: No host reachable before payment
        """
        purchase_id = purchase_id or str(uuid.uuid4())
        plog = get_purchase_logger(purchase_id)

        self.validate(region, link_url, pending_paint)

        # Step 3 guard, held across the affordability check
        if not self._guard.acquire(blocking=False):
            raise PurchaseInProgressError()

        try:
            handle = self._connection()
            ledger = handle.ledger(self._call_timeout)

            # Step 1
            cost = region.cost(self._price)
            fee_estimate = self._fees.current(ledger)
            total = cost + fee_estimate

            # Step 2
            available = self._balance.balance_e8s
            if available < total:
                plog.info(f"Insufficient balance: need {total}, have {available}")
                raise InsufficientBalanceError(total, available)

            return self._run(purchase_id, plog, handle, region, link_url, pending_paint, cost, fee_estimate, total)
        finally:
            self._guard.release()

    def _run(self, purchase_id, plog, handle, region, link_url, pending_paint, cost, fee_estimate, total):
        ticket = self._balance.begin_optimistic(-total)
        plog.info(f"Purchasing {region} ({region.pixel_count} px) for {cost} + fee {fee_estimate} on {handle.host}")

        # Step 4
        try:
            attempt = self._executor.transfer(handle.ledger(self._call_timeout), cost, fee_estimate)
        except Exception:
            self._balance.rollback(ticket)
            raise
        if not attempt.ok:
            self._balance.rollback(ticket)
            if attempt.is_error:
                self._notifier.error(attempt.message)
            else:
                self._notifier.info(attempt.message)
            plog.warning(f"Payment not captured: {attempt.message}")
            return PurchaseResult.create_failed(purchase_id, attempt.message, region.to_dict())

        # Step 5: from here on the block index is the result, whatever fails
        receipt = attempt.receipt
        self._balance.commit(ticket, settled_delta=-receipt.total)
        self._selector.mark_sticky(handle.host, self._sticky_after_payment)
        outcome = CommitOutcome()
        outcome.mark_paid()
        plog.info(f"Payment captured: block {receipt.block_index} (fee {receipt.fee})")

        step = "claim"
        try:
            billboard = handle.billboard(self._canvas.width, self._call_timeout)

            # Step 6
            self._claim(billboard, region, link_url, plog)
            outcome.mark_claimed()

            # Step 7
            if pending_paint is not None:
                step = "paint"
                self._paint(billboard, region, pending_paint, plog)
                outcome.mark_painted()
        except Exception as e:
            if isinstance(e, BillboardError):
                reason = e.message
            else:
                reason = f"{type(e).__name__}: {e}"
                plog.exception(f"Unexpected error during {step}")
            error = PartialCommitError(receipt.block_index, step, reason, purchase_id)
            plog.error(str(error))
            self._notifier.error(error.message)
            self._balance.refresh(hard_retry=True, notify=False)
            return PurchaseResult.create_partial(
                purchase_id,
                outcome,
                region.to_dict(),
                receipt.block_index,
                receipt.amount,
                receipt.fee,
                error.message,
            )

        # Step 8
        try:
            self._canvas.read_full()
        except Exception as e:
            plog.warning(f"Canvas re-read failed (ignored): {e}")

        # Step 9
        try:
            if self._verifier.await_visible(region, pending_paint, link_url):
                outcome.mark_verified()
            else:
                plog.warning("Changes not yet visible on all hosts")
        except Exception as e:
            plog.warning(f"Visibility check failed (ignored): {e}")

        # Step 10
        with self._session.lock:
            self._session.pending_preview = None
        result = PurchaseResult.create_completed(
            purchase_id,
            outcome,
            region.to_dict(),
            receipt.block_index,
            receipt.amount,
            receipt.fee,
        )
        self._notifier.success(result.message)
        try:
            self._balance.refresh(hard_retry=True, notify=False)
            self._selector.mark_sticky(handle.host, self._sticky_after_commit)
        except Exception as e:
            plog.warning(f"Post-purchase housekeeping failed (ignored): {e}")
        plog.info(f"Purchase complete: block {receipt.block_index}")
        return result

    def _claim(self, billboard: BillboardClient, region: Region, link_url: str, plog) -> None:
        batches = list(region.split(self._claim_slice))
        for number, part in enumerate(batches, 1):
            billboard.claim(part, link_url)
            plog.debug(f"Claimed batch {number}/{len(batches)}: {part}")
        plog.info(f"Claimed {region.pixel_count} px in {len(batches)} batch(es)")

    def _paint(self, billboard: BillboardClient, region: Region, preview: PendingPreview, plog) -> None:
        batches = list(region.split(self._paint_slice))
        for number, part in enumerate(batches, 1):
            billboard.paint(part, preview.colors_for(part))
            plog.debug(f"Painted batch {number}/{len(batches)}: {part}")
        plog.info(f"Painted {region.pixel_count} px in {len(batches)} batch(es)")
