# flask_app/routes/auth.py

"""
Session login/logout for the JSON API
"""

from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from flask_app.models import User


def register_auth_routes(app):
    """Register authentication routes"""

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        payload = request.get_json(silent=True) or {}
        username = str(payload.get("username", "")).strip()
        password = payload.get("password") or ""
        if not username or not password:
            return jsonify({"error": "Username and password are required."}), 400

        user = User.query.filter_by(username=username).first()
        if user is None or not user.is_active or not user.check_password(password):
            current_app.logger.warning(f"Failed login attempt for username: {username}")
            return jsonify({"error": "Invalid username or password."}), 401

        login_user(user, remember=bool(payload.get("remember", False)))
        current_app.logger.info(f"User {user.username} logged in")
        return jsonify({"success": True, "user": {"id": user.id, "username": user.username}})

    @app.route("/api/auth/logout", methods=["POST"])
    @login_required
    def logout():
        username = current_user.username
        logout_user()
        current_app.logger.info(f"User {username} logged out")
        return jsonify({"success": True})
