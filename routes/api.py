"""
API routes (read-only endpoints).

Handles:
- /health - Health check endpoint
- /api/notifications - Drain pending user notifications
- /api/link - Link stored for one pixel
- /api/canvas - Full canvas read (tiled fallback)
"""

from flask import Blueprint, current_app, request

from core.exceptions import InvalidRegionError
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    # Balance poller
    balance_tracker = current_app.config.get("BALANCE_TRACKER")
    if balance_tracker and balance_tracker.is_polling:
        health_status["checks"]["balance_poller"] = "running"
    else:
        health_status["checks"]["balance_poller"] = "not_running"
        health_status["status"] = "degraded"

    # Purchase service
    purchase_service = current_app.config.get("PURCHASE_SERVICE")
    orchestrator = current_app.config.get("PURCHASE_ORCHESTRATOR")
    if purchase_service and orchestrator:
        health_status["checks"]["purchase"] = "busy" if orchestrator.is_busy else "idle"
    else:
        health_status["checks"]["purchase"] = "not_available"
        health_status["status"] = "degraded"

    # Session
    session_context = current_app.config.get("SESSION_CONTEXT")
    if session_context:
        snapshot = session_context.snapshot()
        health_status["checks"]["signed_in"] = snapshot["signed_in"]
        health_status["checks"]["host"] = snapshot["host"]

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code


@api_bp.route("/api/notifications", methods=["GET"])
def notifications():
    """Return and clear pending notifications (oldest first)."""
    notifier = current_app.config["NOTIFIER"]
    return {"notifications": [n.to_dict() for n in notifier.drain()]}


@api_bp.route("/api/link", methods=["GET"])
def link():
    """
    Color and link of the pixel at ?x=&y=.

    The link is read through the anonymous read path, so it may briefly lag
    a purchase that just committed on another host.
    """
    canvas = current_app.config["CANVAS_READER"]

    x = request.args.get("x", type=int)
    y = request.args.get("y", type=int)
    if x is None or y is None:
        raise InvalidRegionError("x and y query parameters are required")
    if not (0 <= x < canvas.width and 0 <= y < canvas.height):
        raise InvalidRegionError(f"({x},{y}) is outside the canvas")

    return canvas.describe_pixel(x, y)


@api_bp.route("/api/canvas", methods=["GET"])
def canvas():
    """
    Read the whole canvas.

    ?pixels=1 includes the row-major color array; otherwise only frame
    metadata is returned.
    """
    reader = current_app.config["CANVAS_READER"]
    include_pixels = request.args.get("pixels", "0") == "1"

    frame = reader.read_full()
    logger.debug(f"Canvas read from {frame.host} (tiled={frame.tiled})")
    return frame.to_dict(include_pixels=include_pixels)
