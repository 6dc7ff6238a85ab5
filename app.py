"""
Pixel Billboard - Flask Application Entry Point.

This is a slim app factory that:
1. Builds the session context and boundary host selector
2. Starts the balance tracker (separate thread)
3. Wires the purchase pipeline (thread-per-purchase)
4. Registers route blueprints
5. Sets up JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling
    └── Cleanup on shutdown

    Balance Thread (background)
    └── 15-second refresh loop on the current connection

    Purchase Threads (one at a time, single-flight)
    └── pay -> claim -> paint -> verify, all calls sequential

SessionContext is the only state shared between them, and every access to
it goes through its lock.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv
from flask import Flask
from werkzeug.exceptions import HTTPException

from logging_config import setup_logging, get_logger
from core.exceptions import (
    BillboardError,
    InsufficientBalanceError,
    InvalidLinkError,
    InvalidRegionError,
    NoHealthyHostError,
    NotSignedInError,
    PurchaseInProgressError,
    RemoteCallError,
    RemoteTimeoutError,
)
from core.remote import ProtocolVersion
from core.retry import Backoff
from models.session import SessionContext
from services.balance_tracker import BalanceTracker
from services.canvas_reader import CanvasReader
from services.convergence_verifier import ConvergenceVerifier
from services.host_selector import HostSelector
from services.notifier import Notifier
from services.purchase_orchestrator import PurchaseOrchestrator
from services.purchase_service import PurchaseService
from services.transfer_executor import FeeOracle, TransferExecutor
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)

# Most specific first
ERROR_STATUS = [
    (NotSignedInError, 401),
    (InvalidLinkError, 400),
    (InvalidRegionError, 400),
    (InsufficientBalanceError, 402),
    (PurchaseInProgressError, 409),
    (NoHealthyHostError, 503),
    (RemoteTimeoutError, 504),
    (RemoteCallError, 502),
]


def status_for(error: BillboardError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In a frozen bundle: the directory containing the executable
    In development: the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def create_app(
    config_object: str = "config.Config",
    transport_factory: Optional[Callable] = None,
    start_background: bool = True
) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the configuration class
        transport_factory: host -> transport; defaults to HttpTransport
        start_background: Start the balance poller

    Returns:
        Configured Flask application
    """
    # Use override=True so .env file always takes precedence over shell environment
    env_file = _get_base_path() / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        app_name="pixel_billboard",
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting Pixel Billboard in {app.config.get('ENVIRONMENT')} mode")

    cfg = app.config

    # =========================================================================
    # SESSION AND CONNECTIVITY
    # =========================================================================

    session_context = SessionContext()
    notifier = Notifier()

    selector = HostSelector(
        cfg["BOUNDARY_HOSTS"],
        session_context,
        cfg["LEDGER_CANISTER_ID"],
        cfg["BILLBOARD_CANISTER_ID"],
        protocol=ProtocolVersion.from_config(cfg["BILLBOARD_PROTOCOL"]),
        probe_timeout_seconds=cfg["PROBE_TIMEOUT_S"],
        transport_factory=transport_factory,
    )

    # =========================================================================
    # SERVICES
    # =========================================================================

    balance_tracker = BalanceTracker(
        session_context,
        selector,
        notifier,
        balance_timeout_seconds=cfg["BALANCE_TIMEOUT_S"],
        probe_timeout_seconds=cfg["PROBE_TIMEOUT_S"],
        poll_interval_seconds=cfg["BALANCE_POLL_INTERVAL_S"],
    )

    fee_oracle = FeeOracle(cfg["FALLBACK_FEE_E8S"], timeout_seconds=cfg["PROBE_TIMEOUT_S"])
    transfer_executor = TransferExecutor(
        cfg["RECEIVER_PRINCIPAL"],
        fee_oracle,
        transient_backoff=Backoff.fixed(cfg["TRANSIENT_BACKOFF_S"]),
        call_timeout_seconds=cfg["CALL_TIMEOUT_S"],
    )

    canvas_reader = CanvasReader(
        selector,
        width=cfg["CANVAS_WIDTH"],
        height=cfg["CANVAS_HEIGHT"],
        tile_size=cfg["TILE_SIZE"],
        tile_concurrency=cfg["TILE_CONCURRENCY"],
        call_timeout_seconds=cfg["CALL_TIMEOUT_S"],
    )

    verifier = ConvergenceVerifier(
        selector,
        cfg["CANVAS_WIDTH"],
        timeout_seconds=cfg["VERIFY_TIMEOUT_S"],
        backoff=Backoff(
            base=cfg["VERIFY_BASE_DELAY_S"],
            multiplier=cfg["VERIFY_MULTIPLIER"],
            cap=cfg["VERIFY_MAX_DELAY_S"],
        ),
    )

    orchestrator = PurchaseOrchestrator(
        session_context,
        selector,
        balance_tracker,
        fee_oracle,
        transfer_executor,
        canvas_reader,
        verifier,
        notifier,
        price_e8s_per_pixel=cfg["PRICE_E8S_PER_PIXEL"],
        claim_slice=cfg["CLAIM_SLICE"],
        paint_slice=cfg["PAINT_SLICE"],
        sticky_after_payment_seconds=cfg["STICKY_AFTER_PAYMENT_S"],
        sticky_after_commit_seconds=cfg["STICKY_AFTER_COMMIT_S"],
        call_timeout_seconds=cfg["CALL_TIMEOUT_S"],
    )

    purchase_service = PurchaseService(orchestrator, notifier)

    # Store in app config for access by routes
    app.config["SESSION_CONTEXT"] = session_context
    app.config["NOTIFIER"] = notifier
    app.config["HOST_SELECTOR"] = selector
    app.config["BALANCE_TRACKER"] = balance_tracker
    app.config["FEE_ORACLE"] = fee_oracle
    app.config["CANVAS_READER"] = canvas_reader
    app.config["PURCHASE_ORCHESTRATOR"] = orchestrator
    app.config["PURCHASE_SERVICE"] = purchase_service

    if start_background:
        balance_tracker.start_polling()

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown (runs at most once per app)."""
        atexit.unregister(cleanup)
        logger.info("Shutting down...")
        balance_tracker.stop_polling()
        purchase_service.shutdown()
        logger.info("Shutdown complete")

    atexit.register(cleanup)
    app.extensions["pixel_billboard_cleanup"] = cleanup

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(BillboardError)
    def handle_billboard_error(e: BillboardError):
        status = status_for(e)
        if status >= 500:
            logger.error(f"Request failed: {e}")
        else:
            logger.info(f"Request rejected ({status}): {e.message}")
        return {"error": e.message, "details": e.details}, status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return {"error": e.name, "details": {"description": e.description}}, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "An unexpected error occurred. Please try again.", "details": {}}, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode, use_reloader=False)
