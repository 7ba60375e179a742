from .schema import AttendanceStatus, LegacyAttendanceRecord, LegacyImportRun

__all__ = ["AttendanceStatus", "LegacyAttendanceRecord", "LegacyImportRun"]
