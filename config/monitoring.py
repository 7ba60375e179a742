# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")
    HEALTH_CHECK_ENDPOINT = os.environ.get("HEALTH_CHECK_ENDPOINT", "/health")

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    APP_NAME = os.environ.get("APP_NAME", "Legacy Attendance Importer")
    APP_VERSION = os.environ.get("APP_VERSION", "0.1.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "true").lower() == "true"
    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class LegacyImportMonitoring:
    """Prometheus metric helpers for the legacy attendance import engine."""

    PREVIEW_COUNTER = Counter(
        "legacy_import_preview_requests_total",
        "Total legacy attendance previews by outcome.",
        labelnames=("status",),
    )
    COMMIT_COUNTER = Counter(
        "legacy_import_commit_requests_total",
        "Total legacy attendance commits by outcome.",
        labelnames=("status",),
    )
    COMMIT_LATENCY = Histogram(
        "legacy_import_commit_seconds",
        "Latency histogram for legacy attendance commits.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    )
    CELL_COUNTER = Counter(
        "legacy_import_cells_total",
        "Matrix cells seen by the legacy parser, by outcome.",
        labelnames=("outcome",),
    )
    ROWS_WRITTEN_COUNTER = Counter(
        "legacy_import_rows_written_total",
        "Legacy attendance rows written by commits, by action.",
        labelnames=("action",),
    )
    MAPPING_COUNTER = Counter(
        "legacy_import_mapping_requests_total",
        "Legacy identity mapping operations by outcome.",
        labelnames=("status",),
    )

    @classmethod
    def record_preview(cls, status: str, *, processed_cells: int = 0, skipped_cells: int = 0) -> None:
        cls.PREVIEW_COUNTER.labels(status=status).inc()
        if processed_cells:
            cls.CELL_COUNTER.labels(outcome="processed").inc(processed_cells)
        if skipped_cells:
            cls.CELL_COUNTER.labels(outcome="skipped").inc(skipped_cells)

    @classmethod
    def record_commit(
        cls,
        status: str,
        duration_seconds: float,
        *,
        rows_inserted: int = 0,
        rows_updated: int = 0,
    ) -> None:
        cls.COMMIT_COUNTER.labels(status=status).inc()
        cls.COMMIT_LATENCY.labels(status=status).observe(duration_seconds)
        if rows_inserted:
            cls.ROWS_WRITTEN_COUNTER.labels(action="inserted").inc(rows_inserted)
        if rows_updated:
            cls.ROWS_WRITTEN_COUNTER.labels(action="updated").inc(rows_updated)

    @classmethod
    def record_mapping(cls, status: str) -> None:
        cls.MAPPING_COUNTER.labels(status=status).inc()
