"""
Flask route blueprints for the Pixel Billboard client.

- api: health, notifications, canvas and link lookups
- session: sign-in/out and balance
- selection: current selection and paint preview (Flask session)
- purchase: purchase submission and result polling

Each blueprint is registered with the Flask app in create_app().
"""

from .api import api_bp
from .session import session_bp
from .selection import selection_bp
from .purchase import purchase_bp

__all__ = [
    "api_bp",
    "session_bp",
    "selection_bp",
    "purchase_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(api_bp)
    app.register_blueprint(session_bp)
    app.register_blueprint(selection_bp)
    app.register_blueprint(purchase_bp)
