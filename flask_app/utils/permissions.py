# flask_app/utils/permissions.py

from functools import wraps
from http import HTTPStatus

from flask import jsonify
from flask_login import current_user

MANAGE_LEGACY_ATTENDANCE = "manage_legacy_attendance"


def has_permission(user, permission_name):
    """Check if user holds a permission. Legacy attendance tools are super-admin only."""
    if not user or not user.is_authenticated:
        return False

    # Super admins have all permissions
    if user.is_super_admin:
        return True

    return False


def super_admin_api_required(f):
    """Decorator for JSON endpoints: 401 when anonymous, 403 when not a super admin"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({"error": "Authentication required."}), HTTPStatus.UNAUTHORIZED

        if not current_user.is_super_admin:
            return jsonify({"error": "Super admin privileges required."}), HTTPStatus.FORBIDDEN

        return f(*args, **kwargs)
    return decorated_function
