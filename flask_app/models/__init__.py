# flask_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .legacy import AttendanceStatus, LegacyAttendanceRecord, LegacyImportRun
from .user import User

__all__ = [
    "db",
    "BaseModel",
    "User",
    # Legacy attendance models
    "AttendanceStatus",
    "LegacyAttendanceRecord",
    "LegacyImportRun",
]
