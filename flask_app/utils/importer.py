"""
Utility helpers for legacy import feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_legacy_import_enabled(app=None) -> bool:
    """Return True when the legacy import feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("LEGACY_IMPORT_ENABLED", False))
