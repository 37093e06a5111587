"""API Blueprint for KIDSHIELD REST endpoints."""

import logging

from flask import Blueprint, current_app, jsonify, request

api_bp = Blueprint('api', __name__)

logger = logging.getLogger(__name__)


def error_response(code, message, status, details=None):
    """Standard error envelope: {"success": false, "error": {...}}."""
    return jsonify({
        'success': False,
        'error': {
            'code': code,
            'message': message,
            'details': details or {},
        },
    }), status


def is_authorized():
    """Run the app's authorization predicate on the current request."""
    return current_app.extensions['authorize'](request)


def not_authorized(code):
    """403 envelope for a rejected mutating request."""
    logger.warning(f"Unauthorized request rejected (path={request.path}, method={request.method})")
    return error_response(code, "Action non autorisee", 403)


from app.blueprints.api import routes  # noqa: E402, F401
from app.blueprints.api import policy  # noqa: E402, F401  # Story 1.3
from app.blueprints.api import sinkhole  # noqa: E402, F401  # Story 3.1
from app.blueprints.api import foreground  # noqa: E402, F401  # Story 2.3
