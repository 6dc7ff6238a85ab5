"""
Purchase routes.

Handles:
- POST /api/purchase      - Start a purchase in its own thread
- GET  /api/purchase/<id> - Poll for the result (consume-once)

The purchase runs in a PurchaseService thread; this request returns as soon
as the cheap checks pass.
"""

from flask import Blueprint, current_app, request, session

from core.exceptions import InvalidRegionError
from models.paint import PendingPreview
from models.purchase_result import PurchaseResult
from logging_config import get_logger
from .selection import current_selection, parse_region


# Module logger
logger = get_logger(__name__)

purchase_bp = Blueprint("purchase", __name__)


@purchase_bp.route("/api/purchase", methods=["POST"])
def start_purchase():
    """
    Body: {"link": str, "region"?: {x0,y0,x1,y1}, "rgba_b64"?: str}

    Without ``region`` the current selection is used; without ``rgba_b64``
    the stored preview is used when it matches the region.
    """
    data = request.get_json(silent=True) or {}

    if data.get("region") is not None:
        region = parse_region(data["region"])
    else:
        region = current_selection()

    preview = None
    if data.get("rgba_b64"):
        if region is None:
            raise InvalidRegionError("select an area first")
        try:
            preview = PendingPreview.from_base64(region, data["rgba_b64"])
        except ValueError as e:
            raise InvalidRegionError(str(e))
    elif region is not None:
        session_context = current_app.config["SESSION_CONTEXT"]
        with session_context.lock:
            stored = session_context.pending_preview
        if stored is not None and stored.region == region:
            preview = stored

    purchase_service = current_app.config["PURCHASE_SERVICE"]
    purchase_id = purchase_service.submit(region, data.get("link", ""), preview)

    session["purchase_id"] = purchase_id
    session.modified = True

    logger.info(f"Purchase {purchase_id[:8]} started for {region}")
    return PurchaseResult.create_pending(purchase_id).to_dict(), 202


@purchase_bp.route("/api/purchase/<purchase_id>", methods=["GET"])
def purchase_status(purchase_id: str):
    """
    Result of a purchase.

    200 with the result once (it is removed on read), 202 while running,
    404 when unknown or already consumed.
    """
    purchase_service = current_app.config["PURCHASE_SERVICE"]

    result = purchase_service.get_result(purchase_id)
    if result:
        logger.info(f"Purchase {purchase_id[:8]} result delivered: {result.status.value}")
        if session.get("purchase_id") == purchase_id:
            session.pop("purchase_id", None)
        return result.to_dict()

    if purchase_service.is_pending(purchase_id):
        return PurchaseResult.create_pending(purchase_id).to_dict(), 202

    return {"error": "Purchase not found", "details": {"purchase_id": purchase_id}}, 404
