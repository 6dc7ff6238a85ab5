"""
Centralized logging configuration for the Pixel Billboard client.

Every log record carries the thread that produced it and, inside a
purchase, the short purchase id. A purchase touches several services
(host selection, transfer, balance refresh, canvas reads); the purchase
field lets one grep collect all of their lines for a single purchase.

Features:
    - Thread name and purchase id on every record
    - Console output (always enabled)
    - Rotating file logs (optional, for production)
    - Separate error log for ERROR/CRITICAL messages
    - Principals shortened in log text (``redact_principal``)

Log Format:
    2026-10-18 10:15:30 [INFO    ] [MainThread] [-] pixel_billboard.app - Starting application
    2026-10-18 10:15:31 [INFO    ] [Balance] [-] pixel_billboard.services.balance_tracker - [BALANCE] host=https://ic0.app e8s=200000000
    2026-10-18 10:15:32 [INFO    ] [Purchase-a1b2c3d4] [a1b2c3d4] pixel_billboard.services.host_selector - [HOST] using https://ic0.app

Usage:
    from logging_config import setup_logging, get_logger, purchase_context

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    logger = get_logger(__name__)

    with purchase_context(purchase_id):
        ...  # every record logged here is tagged with the purchase id
"""

import logging
import sys
import threading
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional


APP_NAMESPACE = "pixel_billboard"
NO_PURCHASE = "-"

_context = threading.local()


# =============================================================================
# CONTEXT
# =============================================================================

def short_purchase_id(purchase_id: str) -> str:
    return purchase_id[:8]


@contextmanager
def purchase_context(purchase_id: str) -> Iterator[None]:
    """Tag every record logged by this thread with ``purchase_id``."""
    previous = getattr(_context, "purchase_id", None)
    _context.purchase_id = short_purchase_id(purchase_id)
    try:
        yield
    finally:
        _context.purchase_id = previous


def current_purchase_id() -> Optional[str]:
    return getattr(_context, "purchase_id", None)


def redact_principal(principal: Optional[str]) -> str:
    """First and last group of a principal, e.g. ``abcde-...-xyz``."""
    if not principal:
        return "anonymous"
    groups = principal.split("-")
    if len(groups) <= 2:
        return principal
    return f"{groups[0]}-...-{groups[-1]}"


class ThreadContextFilter(logging.Filter):
    """
    Adds ``thread_name``, ``thread_id`` and ``purchase_id`` to each record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        current_thread = threading.current_thread()
        record.thread_name = current_thread.name
        record.thread_id = threading.get_ident()
        record.purchase_id = current_purchase_id() or NO_PURCHASE

        # Context only, never drops a record
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(thread_name)s] [%(purchase_id)s] %(name)s - %(message)s"


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter, context: logging.Filter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(context)
    return handler


def setup_logging(
    app_name: str = APP_NAMESPACE,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application logging.

    Handlers:
    1. Console (always)
    2. Rotating application log (optional)
    3. Rotating error log, ERROR/CRITICAL only (optional)

    All of them share one ThreadContextFilter.

    Args:
        app_name: Name of the root logger (default: "pixel_billboard")
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs next to this file)
        enable_file_logging: Whether to write to log files (default: True)

    Returns:
        Configured root logger instance
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False

    # Re-configuration replaces handlers (app factory called more than once)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    context = ThreadContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(context)
    logger.addHandler(console_handler)

    if enable_file_logging:
        if log_dir is None:
            log_dir = Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        logger.addHandler(_rotating_handler(app_log_file, log_level, formatter, context))
        logger.addHandler(_rotating_handler(log_dir / f"{app_name}_error.log", logging.ERROR, formatter, context))
        logger.info(f"File logging enabled: {app_log_file}")

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger under the application namespace.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance, e.g. "pixel_billboard.services.host_selector"
    """
    if not name.startswith(APP_NAMESPACE):
        name = f"{APP_NAMESPACE}.{name}"

    return logging.getLogger(name)


def get_purchase_logger(purchase_id: str) -> logging.Logger:
    """Logger named "pixel_billboard.purchase.<short id>"."""
    return logging.getLogger(f"{APP_NAMESPACE}.purchase.{short_purchase_id(purchase_id)}")


def set_thread_name(name: str) -> None:
    """Rename the current thread (shown in the [thread_name] field)."""
    threading.current_thread().name = name
