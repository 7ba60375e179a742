"""
Legacy attendance import feature package.

Mounts the JSON blueprint and the ``flask legacy`` CLI group, recording
feature state inside ``app.extensions['legacy_import']``.
"""

from __future__ import annotations

from flask import Flask

from flask_app.utils.importer import is_legacy_import_enabled

from .cli import legacy_cli
from .views import legacy_import_blueprint

LEGACY_IMPORT_EXTENSION_KEY = "legacy_import"

__all__ = [
    "init_legacy_importer",
    "LEGACY_IMPORT_EXTENSION_KEY",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        LEGACY_IMPORT_EXTENSION_KEY,
        {
            "enabled": False,
            "max_cells": None,
            "header_scan_lines": None,
        },
    )


def init_legacy_importer(app: Flask) -> None:
    """
    Register the legacy import blueprint and CLI.

    Both are always mounted; requests and commands answer with a clear
    "disabled" error while ``LEGACY_IMPORT_ENABLED`` is false so the flag can be
    flipped without re-registering anything.
    """
    enabled = is_legacy_import_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "max_cells": app.config.get("LEGACY_IMPORT_MAX_CELLS"),
            "header_scan_lines": app.config.get("LEGACY_IMPORT_HEADER_SCAN_LINES"),
        }
    )

    if legacy_import_blueprint.name not in app.blueprints:
        app.register_blueprint(legacy_import_blueprint)

    # Avoid duplicate registrations when running tests
    if legacy_cli.name in app.cli.commands:
        app.cli.commands.pop(legacy_cli.name)
    app.cli.add_command(legacy_cli)

    if enabled:
        app.logger.info(
            "Legacy import enabled (max_cells=%s, header_scan_lines=%s)",
            state["max_cells"],
            state["header_scan_lines"],
        )
    else:
        app.logger.info("Legacy import disabled via LEGACY_IMPORT_ENABLED flag.")
