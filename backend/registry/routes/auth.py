# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Session routes.

Tokens are issued by the sign-in flow (or `flask users issue-token`); these
endpoints only inspect and end the current session.
"""

from flask import Blueprint, jsonify, g

from ..services import session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.get("/session")
@require_auth
def session_route():
    session = g.session_context.session
    return jsonify({
        "user": g.current_user.to_dict(),
        "session": session.to_dict(),
    })


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token, reason="User logout")
    return jsonify({"message": "Logged out successfully"})
