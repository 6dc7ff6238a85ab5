"""
Session and balance routes.

Handles:
- /api/session/sign-in  - Establish identity, hard-retry balance refresh
- /api/session/sign-out - Reset all session state
- /api/balance          - Current local balance and status
- /api/balance/refresh  - Re-read balance from the ledger
"""

from flask import Blueprint, current_app, request, session

from core.remote import Identity
from logging_config import get_logger, redact_principal


# Module logger
logger = get_logger(__name__)

session_bp = Blueprint("session", __name__)


@session_bp.route("/api/session/sign-in", methods=["POST"])
def sign_in():
    """
    Start a session for an authenticated principal.

    The identity provider flow happens in the browser; this endpoint receives
    the resulting principal (and gateway token, if any).
    """
    data = request.get_json(silent=True) or {}
    principal = str(data.get("principal") or "").strip()
    if not principal:
        return {"error": "principal is required", "details": {}}, 400

    token = data.get("token") or None
    identity = Identity(principal=principal, token=token)

    session_context = current_app.config["SESSION_CONTEXT"]
    balance_tracker = current_app.config["BALANCE_TRACKER"]

    session_context.on_sign_in(identity)
    session.pop("selection", None)
    logger.info(f"Signed in as {redact_principal(principal)}")

    # Initial load rotates through every host before giving up
    balance_tracker.refresh(hard_retry=True)

    return session_context.snapshot()


@session_bp.route("/api/session/sign-out", methods=["POST"])
def sign_out():
    """Drop identity, connection, sticky host, balance and preview."""
    session_context = current_app.config["SESSION_CONTEXT"]
    session_context.on_sign_out()
    session.pop("selection", None)
    logger.info("Signed out")
    return session_context.snapshot()


@session_bp.route("/api/balance", methods=["GET"])
def balance():
    snapshot = current_app.config["SESSION_CONTEXT"].snapshot()
    return {
        "signed_in": snapshot["signed_in"],
        "balance_e8s": snapshot["balance_e8s"],
        "status": snapshot["balance_status"],
        "host": snapshot["host"],
    }


@session_bp.route("/api/balance/refresh", methods=["POST"])
def refresh_balance():
    """
    Re-read the balance now.

    Body: {"hard_retry": bool}. Failures are reported in ``status`` and
    through notifications, never as an HTTP error.
    """
    session_context = current_app.config["SESSION_CONTEXT"]
    if not session_context.is_signed_in:
        return {"error": "Please sign in first.", "details": {}}, 401

    data = request.get_json(silent=True) or {}
    hard_retry = bool(data.get("hard_retry", False))

    refreshed = current_app.config["BALANCE_TRACKER"].refresh(hard_retry=hard_retry)
    snapshot = session_context.snapshot()
    return {
        "refreshed": refreshed,
        "balance_e8s": snapshot["balance_e8s"],
        "status": snapshot["balance_status"],
        "host": snapshot["host"],
    }
