# conftest.py

import os
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

# Set testing environment BEFORE importing app so app.py uses TestingConfig
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from flask_app.models import AttendanceStatus, LegacyAttendanceRecord, User, db  # noqa: E402

SAMPLE_MATRIX = (
    "ATTENDANCE REGISTER,YEAR: 2025,,,,\n"
    "RANK,NAME,ID,26-Dec,2-Jan,9-Jan\n"
    "SGT,Smith,1001,P,A,LOA\n"
    "PVT,Jones,1002,NA,,P\n"
)


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "MONITORING_ENABLED": False,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LEGACY_IMPORT_ENABLED": True,
            "LEGACY_IMPORT_MAX_CELLS": 200_000,
            "LEGACY_IMPORT_HEADER_SCAN_LINES": 10,
            "LEGACY_IMPORT_ACCOUNT_SEARCH_LIMIT": 20,
        }
    )

    with flask_app.app_context():
        # Drop any existing tables to ensure clean state
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def test_user(app):
    """Persisted regular (non-admin) account"""
    user = User(
        username="testuser",
        email="test@example.com",
        password_hash=generate_password_hash("testpass123"),
        first_name="Test",
        last_name="User",
        is_active=True,
        is_super_admin=False,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user(app):
    """Persisted super admin account"""
    user = User(
        username="admin",
        email="admin@example.com",
        password_hash=generate_password_hash("adminpass123"),
        first_name="Admin",
        last_name="User",
        is_active=True,
        is_super_admin=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def _login(client, user):
    with client.session_transaction() as session:
        session["_user_id"] = str(user.id)
        session["_fresh"] = True


@pytest.fixture
def logged_in_admin(client, admin_user):
    """Client with an authenticated super admin session"""
    _login(client, admin_user)
    return client, admin_user


@pytest.fixture
def logged_in_user(client, test_user):
    """Client with an authenticated non-admin session"""
    _login(client, test_user)
    return client, test_user


@pytest.fixture
def sample_matrix():
    return SAMPLE_MATRIX


@pytest.fixture
def legacy_record_factory(app):
    """Insert legacy attendance rows directly"""

    def _factory(
        legacy_identity="Smith",
        event_date=date(2026, 1, 2),
        status=AttendanceStatus.PRESENT,
        *,
        mapped_user_id=None,
        legacy_user_id=None,
    ):
        record = LegacyAttendanceRecord(
            legacy_identity=legacy_identity,
            legacy_user_id=legacy_user_id,
            event_date=event_date,
            status=status,
            notes="Seeded for tests",
            is_mapped=mapped_user_id is not None,
            mapped_user_id=mapped_user_id,
        )
        db.session.add(record)
        db.session.commit()
        return record

    return _factory
