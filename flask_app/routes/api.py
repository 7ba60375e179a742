# flask_app/routes/api.py

"""
API routes for AJAX/JSON endpoints
"""

from flask import current_app, jsonify, request
from flask_login import current_user

from flask_app.importer.pipeline import IdentityResolver
from flask_app.utils.permissions import super_admin_api_required


def register_api_routes(app):
    """Register API routes"""

    @app.route("/api/users/search", methods=["GET"])
    @super_admin_api_required
    def api_search_users():
        """
        Account directory lookup used when mapping legacy identities.
        Returns JSON list of matching active accounts.
        """
        query = request.args.get("q", "").strip()
        limit = request.args.get("limit", type=int)
        current_app.logger.info(f"User search API called with query: '{query}' by user: {current_user.username}")

        try:
            users = IdentityResolver().search_accounts(query, limit=limit)
        except Exception as e:
            current_app.logger.error(f"Error in user search API: {str(e)}", exc_info=True)
            return jsonify({"error": "An error occurred while searching users", "results": []}), 500

        # Format results for Select2
        results = [
            {
                "id": user.id,
                "username": user.username,
                "email": user.email or "",
                "text": f"{user.display_name} ({user.username})",
            }
            for user in users
        ]
        current_app.logger.debug(f"Returning {len(results)} results")
        return jsonify({"results": results})
