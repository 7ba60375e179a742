# flask_app/routes/__init__.py
"""
Application routes package
"""

from .api import register_api_routes
from .auth import register_auth_routes
from .monitoring import register_monitoring_routes


def init_routes(app):
    """Initialize all application routes"""
    register_monitoring_routes(app)
    register_auth_routes(app)
    register_api_routes(app)
