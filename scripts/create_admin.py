# create_admin.py

import os
import sys
from getpass import getpass

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from werkzeug.security import generate_password_hash  # noqa: E402

from app import app  # noqa: E402
from flask_app.models import User  # noqa: E402


def create_admin():
    """Create a super admin able to run legacy imports and map identities."""
    with app.app_context():
        username = input("Enter username: ").strip()
        email = input("Enter email: ").strip() or None

        if User.query.filter_by(username=username).first():
            print("Error: Username already exists.")
            sys.exit(1)

        if email and User.query.filter_by(email=email).first():
            print("Error: Email already exists.")
            sys.exit(1)

        password = getpass("Enter password: ")
        if not password or password != getpass("Confirm password: "):
            print("Error: Passwords are empty or do not match.")
            sys.exit(1)

        admin_user, error = User.safe_create(
            username=username,
            email=email,
            password_hash=generate_password_hash(password),
            is_active=True,
            is_super_admin=True,
        )

        if error:
            print(f"Error creating admin account: {error}")
            sys.exit(1)

        print(f"Super admin '{admin_user.username}' created (id={admin_user.id}).")
        print("Log in with POST /api/auth/login, then use /api/attendance/legacy-import and /legacy-data.")


if __name__ == "__main__":
    create_admin()
