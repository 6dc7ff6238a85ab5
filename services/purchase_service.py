"""
Purchase submission service with thread-per-purchase architecture.

Each purchase runs in its own named thread so the Flask request that
started it returns immediately. Within the thread every remote call is
sequential; the orchestrator's single-flight guard keeps purchases from
overlapping.

Thread Safety:
    - Region and PendingPreview are frozen - safe to hand to the thread
    - PurchaseResult is created by the purchase thread, consumed by Flask
    - PurchaseResultStore uses threading.Lock for all access

Flow:
    1. Flask thread calls purchase_service.submit(region, link, preview)
    2. Cheap checks run synchronously (sign-in, link, region, busy)
    3. Purchase thread runs PurchaseOrchestrator.purchase()
    4. Purchase thread stores PurchaseResult in PurchaseResultStore
    5. Flask thread polls purchase_service.get_result(purchase_id)

Usage:
    purchase_id = purchase_service.submit(region, "https://example.com")

    result = purchase_service.get_result(purchase_id)
    if result is None and purchase_service.is_pending(purchase_id):
        ...  # still running
"""

from __future__ import annotations

import threading
import uuid
from typing import Dict, Optional

from core.exceptions import BillboardError
from models.paint import PendingPreview
from models.purchase_result import PurchaseResult
from models.region import Region
from logging_config import get_logger, get_purchase_logger, purchase_context, set_thread_name
from .notifier import Notifier
from .purchase_orchestrator import PurchaseOrchestrator


logger = get_logger(__name__)


class PurchaseResultStore:
    """
    Thread-safe storage for purchase results.

    Purchase threads WRITE results here, Flask threads READ (and remove)
    them. get_result() is consume-once.
    """

    def __init__(self):
        self._results: Dict[str, PurchaseResult] = {}
        self._lock = threading.Lock()

    def put_result(self, result: PurchaseResult) -> None:
        with self._lock:
            self._results[result.purchase_id] = result
            logger.debug(f"Stored result for purchase {result.purchase_id[:8]}")

    def get_result(self, purchase_id: str) -> Optional[PurchaseResult]:
        """
        Get and remove a purchase result.

        Returns:
            PurchaseResult if available, None otherwise
        """
        with self._lock:
            return self._results.pop(purchase_id, None)


class PurchaseService:
    """Runs purchases in background threads."""

    def __init__(self, orchestrator: PurchaseOrchestrator, notifier: Notifier):
        self._orchestrator = orchestrator
        self._notifier = notifier
        self._result_store = PurchaseResultStore()

        self._active_threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

        logger.info("PurchaseService initialized")

    def submit(
        self,
        region: Optional[Region],
        link_url: str,
        pending_paint: Optional[PendingPreview] = None,
        purchase_id: Optional[str] = None
    ) -> str:
        """
        Validate and start a purchase.

        Returns:
            purchase_id (UUID string)

        Raises:
            PurchaseError: Cheap checks failed; nothing was started
        """
        self._orchestrator.validate(region, link_url, pending_paint)

        if purchase_id is None:
            purchase_id = str(uuid.uuid4())

        logger.info(f"Submitting purchase {purchase_id[:8]} for {region}")

        thread = threading.Thread(
            target=self._purchase_thread_main,
            args=(purchase_id, region, link_url, pending_paint),
            name=f"Purchase-{purchase_id[:8]}",
            daemon=True
        )

        with self._threads_lock:
            self._active_threads[purchase_id] = thread

        thread.start()
        return purchase_id

    def get_result(self, purchase_id: str) -> Optional[PurchaseResult]:
        return self._result_store.get_result(purchase_id)

    def is_pending(self, purchase_id: str) -> bool:
        with self._threads_lock:
            thread = self._active_threads.get(purchase_id)
            return thread is not None and thread.is_alive()

    def wait(self, purchase_id: str, timeout: Optional[float] = None) -> None:
        """Block until the purchase thread finishes (used by tests and shutdown)."""
        with self._threads_lock:
            thread = self._active_threads.get(purchase_id)
        if thread is not None:
            thread.join(timeout=timeout)

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """Wait for active purchase threads to finish."""
        with self._threads_lock:
            active = list(self._active_threads.items())

        if not active:
            logger.info("No active purchase threads to wait for")
            return

        logger.info(f"Waiting for {len(active)} purchase threads to complete...")

        for purchase_id, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Purchase thread {purchase_id[:8]} did not complete in time")

        logger.info("Purchase service shutdown complete")

    def _purchase_thread_main(
        self,
        purchase_id: str,
        region: Region,
        link_url: str,
        pending_paint: Optional[PendingPreview]
    ) -> None:
        set_thread_name(f"Purchase-{purchase_id[:8]}")
        plog = get_purchase_logger(purchase_id)
        with purchase_context(purchase_id):
            result = self._run_purchase(purchase_id, region, link_url, pending_paint, plog)

        # Store before deregistering so pollers never see neither
        self._result_store.put_result(result)
        with self._threads_lock:
            self._active_threads.pop(purchase_id, None)

        plog.info(f"Purchase thread exiting: {result.status.value}")

    def _run_purchase(self, purchase_id, region, link_url, pending_paint, plog) -> PurchaseResult:
        plog.info("Purchase thread starting")
        try:
            return self._orchestrator.purchase(region, link_url, pending_paint, purchase_id=purchase_id)
        except BillboardError as e:
            plog.error(f"Purchase rejected: {e}")
            self._notifier.error(e.message)
            return PurchaseResult.create_failed(purchase_id, e.message, region.to_dict() if region else None)
        except Exception as e:
            plog.exception(f"Purchase failed unexpectedly: {e}")
            self._notifier.error(f"Purchase failed: {e}")
            return PurchaseResult.create_failed(purchase_id, f"Purchase failed: {e}", region.to_dict() if region else None)
