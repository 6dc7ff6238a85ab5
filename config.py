"""
Configuration for the Pixel Billboard client.

All values are constants from the orchestrator's point of view: boundary
hosts, canister ids, canvas geometry, pricing and batch limits are read once
from the environment (and an optional .env file) when this module is imported.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


def _env_list(name: str, default: str) -> list:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Default configuration for the Flask application and the client core."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    SESSION_COOKIE_NAME = "pixel_billboard_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    MAX_CONTENT_LENGTH = 8 * 1024 * 1024  # paint buffers for large regions

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # ==========================================================================
    # Boundary hosts and canisters
    # ==========================================================================
    # Order matters: earlier hosts are preferred on a fresh probe.
    BOUNDARY_HOSTS = _env_list(
        "BOUNDARY_HOSTS",
        "https://icp-api.io,https://ic0.app,https://boundary.ic0.app",
    )
    LEDGER_CANISTER_ID = os.environ.get("LEDGER_CANISTER_ID", "ryjl3-tyaaa-aaaaa-aaaba-cai")
    BILLBOARD_CANISTER_ID = os.environ.get("BILLBOARD_CANISTER_ID", "")
    RECEIVER_PRINCIPAL = os.environ.get(
        "RECEIVER_PRINCIPAL",
        "o72d6-axkp7-lv7lv-24bj5-vldpt-tqd2q-3f3n6-5wdn6-tizzq-ubugz-bae",
    )
    # "v1" = claim_pixels/paint (index lists), "v2" = claim_region/paint_region
    BILLBOARD_PROTOCOL = os.environ.get("BILLBOARD_PROTOCOL", "v1")

    # ==========================================================================
    # Canvas geometry and pricing
    # ==========================================================================
    CANVAS_WIDTH = int(os.environ.get("CANVAS_WIDTH", "1000"))
    CANVAS_HEIGHT = int(os.environ.get("CANVAS_HEIGHT", "1000"))
    TILE_SIZE = int(os.environ.get("TILE_SIZE", "125"))
    TILE_CONCURRENCY = int(os.environ.get("TILE_CONCURRENCY", "16"))

    # 0.01 token per pixel = 1_000_000 e8s
    PRICE_E8S_PER_PIXEL = int(os.environ.get("PRICE_E8S_PER_PIXEL", "1000000"))
    # Used only when neither icrc1_fee nor icrc1_metadata answers
    FALLBACK_FEE_E8S = int(os.environ.get("FALLBACK_FEE_E8S", "10000"))

    # Per-call batch limits (remote message size)
    CLAIM_SLICE = int(os.environ.get("CLAIM_SLICE", "4000"))
    PAINT_SLICE = int(os.environ.get("PAINT_SLICE", "2000"))

    # ==========================================================================
    # Timeouts and windows (seconds)
    # ==========================================================================
    PROBE_TIMEOUT_S = float(os.environ.get("PROBE_TIMEOUT_S", "2.5"))
    BALANCE_TIMEOUT_S = float(os.environ.get("BALANCE_TIMEOUT_S", "3.0"))
    CALL_TIMEOUT_S = float(os.environ.get("CALL_TIMEOUT_S", "30.0"))
    STICKY_AFTER_PAYMENT_S = float(os.environ.get("STICKY_AFTER_PAYMENT_S", "90"))
    STICKY_AFTER_COMMIT_S = float(os.environ.get("STICKY_AFTER_COMMIT_S", "60"))
    TRANSIENT_BACKOFF_S = float(os.environ.get("TRANSIENT_BACKOFF_S", "0.4"))

    VERIFY_TIMEOUT_S = float(os.environ.get("VERIFY_TIMEOUT_S", "15"))
    VERIFY_BASE_DELAY_S = float(os.environ.get("VERIFY_BASE_DELAY_S", "0.25"))
    VERIFY_MULTIPLIER = float(os.environ.get("VERIFY_MULTIPLIER", "1.3"))
    VERIFY_MAX_DELAY_S = float(os.environ.get("VERIFY_MAX_DELAY_S", "1.2"))

    BALANCE_POLL_INTERVAL_S = float(os.environ.get("BALANCE_POLL_INTERVAL_S", "15"))


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    BOUNDARY_HOSTS = ["https://host-a.test", "https://host-b.test", "https://host-c.test"]
    BILLBOARD_CANISTER_ID = "billboard-test"
    LEDGER_CANISTER_ID = "ledger-test"
    RECEIVER_PRINCIPAL = "receiver-test"
    CANVAS_WIDTH = 100
    CANVAS_HEIGHT = 100
    TILE_SIZE = 25
    TILE_CONCURRENCY = 4
    TRANSIENT_BACKOFF_S = 0.0
    VERIFY_TIMEOUT_S = 0.5
    VERIFY_BASE_DELAY_S = 0.01
    VERIFY_MAX_DELAY_S = 0.05
    BALANCE_POLL_INTERVAL_S = 3600.0
