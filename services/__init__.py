"""
Services layer for the Pixel Billboard client.

- HostSelector: boundary host probing, sticky bias
- BalanceTracker: ledger balance, optimistic tickets, background polling
- TransferExecutor / FeeOracle: ICRC-1 transfer with recovery
- CanvasReader: full and tiled canvas reads
- ConvergenceVerifier: read-after-write polling
- PurchaseOrchestrator: pay -> claim -> paint -> verify
- PurchaseService: purchase threads and result store
- Notifier: user-facing message queue

Thread Model:
    Main Thread (Flask)
    ├── BalanceTracker thread (15-second refresh loop)
    └── PurchaseService threads (one per purchase, single-flight)
"""

from .host_selector import HostSelector
from .notifier import Notification, Notifier
from .balance_tracker import BalanceTracker
from .transfer_executor import FeeOracle, TransferAttempt, TransferExecutor, TransferFailureKind
from .canvas_reader import CanvasFrame, CanvasReader
from .convergence_verifier import ConvergenceVerifier
from .purchase_orchestrator import PurchaseOrchestrator, is_valid_link
from .purchase_service import PurchaseResultStore, PurchaseService

__all__ = [
    "HostSelector",
    "Notification",
    "Notifier",
    "BalanceTracker",
    "FeeOracle",
    "TransferAttempt",
    "TransferExecutor",
    "TransferFailureKind",
    "CanvasFrame",
    "CanvasReader",
    "ConvergenceVerifier",
    "PurchaseOrchestrator",
    "is_valid_link",
    "PurchaseResultStore",
    "PurchaseService",
]
