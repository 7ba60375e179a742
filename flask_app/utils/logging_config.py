# flask_app/utils/logging_config.py

"""
Application logging setup.

Configures ``app.logger`` plus the ``flask_app`` package logger from the
monitoring settings (``LOG_LEVEL``, ``LOG_FORMAT``, ``LOG_DIR`` ...). JSON
output is used in production so structured ``extra`` fields survive.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import has_request_context, request

from config.monitoring import MonitoringConfig

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if has_request_context():
            payload["request"] = {
                "method": request.method,
                "path": request.path,
                "remote_addr": request.remote_addr,
            }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _config_value(app, key):
    return app.config.get(key, getattr(MonitoringConfig, key))


def _build_formatter(log_format):
    if str(log_format).lower() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT)


def setup_logging(app):
    """Attach console and rotating file handlers to the application loggers."""
    level_name = str(_config_value(app, "LOG_LEVEL")).upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(_config_value(app, "LOG_FORMAT"))

    handlers = []
    if _config_value(app, "ENABLE_CONSOLE_LOGGING"):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if _config_value(app, "ENABLE_FILE_LOGGING"):
        log_dir = _config_value(app, "LOG_DIR")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "app.log"),
            maxBytes=int(_config_value(app, "LOG_FILE_MAX_BYTES")),
            backupCount=int(_config_value(app, "LOG_FILE_BACKUP_COUNT")),
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for logger in (app.logger, logging.getLogger("flask_app")):
        for handler in list(logger.handlers):
            if getattr(handler, "_legacy_import_handler", False):
                logger.removeHandler(handler)
        for handler in handlers:
            handler._legacy_import_handler = True
            handler.setLevel(level)
            logger.addHandler(handler)
        logger.setLevel(level)

    app.logger.info(
        "Logging configured",
        extra={"log_level": level_name, "log_handlers": [type(handler).__name__ for handler in handlers]},
    )
