# flask_app/routes/monitoring.py

"""
Health and Prometheus metrics endpoints
"""

from flask import Response, current_app, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from flask_app.models import db


def register_monitoring_routes(app):
    """Register health check and metrics routes"""

    @app.route(app.config.get("HEALTH_CHECK_ENDPOINT", "/health"), methods=["GET"])
    def health_check():
        """Report application and database health"""
        database_status = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            current_app.logger.error(f"Health check database query failed: {str(e)}")
            database_status = "error"

        status_code = 200 if database_status == "ok" else 503
        return (
            jsonify(
                {
                    "status": "healthy" if status_code == 200 else "unhealthy",
                    "database": database_status,
                    "app": current_app.config.get("APP_NAME"),
                    "version": current_app.config.get("APP_VERSION"),
                }
            ),
            status_code,
        )

    @app.route(app.config.get("METRICS_ENDPOINT", "/metrics"), methods=["GET"])
    def metrics():
        """Prometheus exposition format"""
        if not current_app.config.get("MONITORING_ENABLED", False):
            return jsonify({"error": "Monitoring is disabled."}), 404
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
