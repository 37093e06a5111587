"""Foreground engine API endpoints for KIDSHIELD.

The host pushes focus events and window content here and polls the
resulting actions (go home / bring to front).

Story 2.3: Moteur de blocage au premier plan
"""

import logging

from flask import current_app, jsonify, request

from . import api_bp, error_response, is_authorized, not_authorized
from app.models.foreground import FocusEvent

logger = logging.getLogger(__name__)

FOREGROUND_INVALID_EVENT = "FOREGROUND_INVALID_EVENT"
FOREGROUND_INVALID_HOST = "FOREGROUND_INVALID_HOST"
FOREGROUND_NOT_AUTHORIZED = "FOREGROUND_NOT_AUTHORIZED"

# Host profile fields the host may update at runtime
HOST_STRING_FIELDS = ("launcher_package", "ime_package", "app_label")
HOST_SET_FIELDS = {"extra_browsers": "browser_packages", "alarm_packages": "alarm_packages"}


@api_bp.route('/foreground/events', methods=['POST'])
def post_event():
    """Submit a focus event.

    Request Body:
        {"package": "com.game", "kind": "focus_gained", "at_ms": 1700000000000}

    Returns:
        202: Event queued on the running dispatcher
        200: Event evaluated inline (dispatcher not running)
        400: Invalid event
        403: Not authorized
    """
    if not is_authorized():
        return not_authorized(FOREGROUND_NOT_AUTHORIZED)

    data = request.get_json(silent=True) or {}
    try:
        event = FocusEvent.from_dict(data)
    except (TypeError, ValueError) as exc:
        return error_response(FOREGROUND_INVALID_EVENT, str(exc), 400)

    engine = current_app.extensions['foreground']
    dispatcher = current_app.extensions['dispatcher']

    if dispatcher.is_running:
        engine.submit(event)
        return jsonify({
            "success": True,
            "result": {"queued": True, "package": event.package},
        }), 202

    outcome = engine.handle_event(event)
    dispatcher.run_pending()
    return jsonify({
        "success": True,
        "result": {"queued": False, "package": event.package, "outcome": outcome.value},
    }), 200


@api_bp.route('/foreground/screen', methods=['PUT'])
def put_screen():
    """Replace the current window content tree (empty body clears it)."""
    if not is_authorized():
        return not_authorized(FOREGROUND_NOT_AUTHORIZED)

    data = request.get_json(silent=True)
    screen = current_app.extensions['screen']
    if isinstance(data, dict) and data:
        screen.update(data)
    else:
        screen.clear()
    return jsonify({"success": True, "result": {"has_content": screen() is not None}}), 200


@api_bp.route('/foreground/actions', methods=['GET'])
def get_actions():
    """Return pending actions.

    Query Params:
        drain: "1" to consume the returned actions (default: "1")
    """
    if not is_authorized():
        return not_authorized(FOREGROUND_NOT_AUTHORIZED)

    sink = current_app.extensions['action_sink']
    drain = request.args.get("drain", "1") != "0"
    actions = sink.drain() if drain else sink.peek()
    return jsonify({
        "success": True,
        "result": {
            "actions": [a.to_dict() for a in actions],
            "count": len(actions),
        },
    }), 200


@api_bp.route('/foreground/host', methods=['PUT'])
def put_host():
    """Update host profile fields (launcher, keyboard, label, browsers)."""
    if not is_authorized():
        return not_authorized(FOREGROUND_NOT_AUTHORIZED)

    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return error_response(FOREGROUND_INVALID_HOST, "Objet JSON requis", 400)

    changes = {}
    for key, value in data.items():
        if key in HOST_STRING_FIELDS and (value is None or isinstance(value, str)):
            changes[key] = value or None
        elif key in HOST_SET_FIELDS and isinstance(value, list):
            changes[HOST_SET_FIELDS[key]] = frozenset(str(v) for v in value)
        else:
            return error_response(FOREGROUND_INVALID_HOST, f"Champ invalide: {key}", 400)

    if "app_label" in changes and not changes["app_label"]:
        return error_response(FOREGROUND_INVALID_HOST, "app_label ne peut pas etre vide", 400)

    host = current_app.extensions['foreground'].update_host(**changes)
    logger.info(f"Host profile updated (fields={','.join(sorted(changes))})")
    return jsonify({"success": True, "result": host.to_dict()}), 200
