"""
Selection routes.

The current selection lives in the Flask session as a normalized rectangle,
so a page reload restores it. A paint preview for that selection is kept in
SessionContext (it is too large for a cookie).

Handles:
- GET    /api/selection - Current selection (and whether a preview is set)
- PUT    /api/selection - Set selection, optionally with an RGBA preview
- DELETE /api/selection - Clear selection and preview
- GET    /api/quote     - Cost of the current selection
"""

from typing import Optional

from flask import Blueprint, current_app, request, session

from core.exceptions import InvalidRegionError
from models.paint import PendingPreview
from models.region import Region
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

selection_bp = Blueprint("selection", __name__)


def current_selection() -> Optional[Region]:
    """Selection restored from the Flask session (None if absent or corrupt)."""
    return Region.from_dict(session.get("selection"))


def parse_region(data) -> Region:
    """Region from a request body, normalized and bounds-checked."""
    region = Region.from_dict(data)
    if region is None:
        raise InvalidRegionError("expected integer x0, y0, x1, y1")

    width = current_app.config["CANVAS_WIDTH"]
    height = current_app.config["CANVAS_HEIGHT"]
    if not region.fits(width, height):
        raise InvalidRegionError(f"{region} is outside the {width}x{height} canvas")
    return region


@selection_bp.route("/api/selection", methods=["GET"])
def get_selection():
    region = current_selection()
    session_context = current_app.config["SESSION_CONTEXT"]
    with session_context.lock:
        preview = session_context.pending_preview

    return {
        "selection": region.to_dict() if region else None,
        "pixels": region.pixel_count if region else 0,
        "has_preview": preview is not None and preview.region == region,
    }


@selection_bp.route("/api/selection", methods=["PUT"])
def put_selection():
    """
    Body: {"x0", "y0", "x1", "y1", "rgba_b64"?}

    Corners may be given in any order. ``rgba_b64`` is width*height*4 bytes
    of row-major RGBA for the normalized rectangle.
    """
    data = request.get_json(silent=True) or {}
    region = parse_region(data)

    preview = None
    if data.get("rgba_b64"):
        try:
            preview = PendingPreview.from_base64(region, data["rgba_b64"])
        except ValueError as e:
            raise InvalidRegionError(str(e))

    session["selection"] = region.to_dict()
    session.modified = True

    session_context = current_app.config["SESSION_CONTEXT"]
    with session_context.lock:
        session_context.pending_preview = preview

    logger.debug(f"Selection set to {region} (preview={'yes' if preview else 'no'})")
    return {"selection": region.to_dict(), "pixels": region.pixel_count, "has_preview": preview is not None}


@selection_bp.route("/api/selection", methods=["DELETE"])
def delete_selection():
    session.pop("selection", None)
    session_context = current_app.config["SESSION_CONTEXT"]
    with session_context.lock:
        session_context.pending_preview = None
    return {"selection": None, "pixels": 0, "has_preview": False}


@selection_bp.route("/api/quote", methods=["GET"])
def quote():
    """Pixels, cost, fee and total for the current selection."""
    region = current_selection()
    if region is None:
        raise InvalidRegionError("select an area first")

    orchestrator = current_app.config["PURCHASE_ORCHESTRATOR"]
    breakdown = orchestrator.quote(region)
    breakdown["selection"] = region.to_dict()
    return breakdown
