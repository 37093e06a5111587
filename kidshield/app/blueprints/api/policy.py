"""Policy API endpoints for KIDSHIELD.

Provides REST API for the shared block policy (flags, lists, temporary
unlocks).

Story 1.3: Policy Store partage

Lessons Learned Epic 1/2/3:
- Use module-level logger, NOT current_app.logger
- Standard response format: {"success": bool, "result": {...}, "error": {...}}
"""

import logging

from flask import current_app, jsonify, request

from . import api_bp, error_response, is_authorized, not_authorized
from app.models.policy import (
    FLAG_DEFAULTS,
    LIST_KEYS,
    POLICY_INVALID_VALUE,
    POLICY_NOT_AUTHORIZED,
    POLICY_UNKNOWN_KEY,
    PolicyError,
)

logger = logging.getLogger(__name__)


def _store():
    return current_app.extensions['policy_store']


@api_bp.route('/policy', methods=['GET'])
def get_policy():
    """Return the full policy with active temporary unlocks."""
    logger.debug("GET /api/policy called")

    return jsonify({
        "success": True,
        "result": _store().to_dict(),
    }), 200


@api_bp.route('/policy/flags', methods=['PUT'])
def update_flags():
    """Update one or more boolean flags.

    Request Body:
        {"blocking_enabled": true, "rest_mode_active": false, ...}

    Returns:
        200: Flags updated
        400: Unknown flag or non-boolean value
        403: Not authorized
    """
    logger.debug("PUT /api/policy/flags called")

    if not is_authorized():
        return not_authorized(POLICY_NOT_AUTHORIZED)

    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return error_response(POLICY_INVALID_VALUE, "Objet JSON de flags requis", 400)

    unknown = sorted(k for k in data if k not in FLAG_DEFAULTS)
    if unknown:
        return error_response(
            POLICY_UNKNOWN_KEY,
            "Flags inconnus",
            400,
            {"keys": unknown, "allowed": sorted(FLAG_DEFAULTS)},
        )
    invalid = sorted(k for k, v in data.items() if not isinstance(v, bool))
    if invalid:
        return error_response(POLICY_INVALID_VALUE, "Valeurs booleennes requises", 400, {"keys": invalid})

    store = _store()
    for key, value in data.items():
        store.set_flag(key, value)
    logger.info(f"Policy flags updated (keys={','.join(sorted(data))})")

    return jsonify({
        "success": True,
        "result": store.to_dict(),
    }), 200


@api_bp.route('/policy/lists/<name>', methods=['PUT'])
def replace_list(name):
    """Replace a whole policy list.

    Args:
        name: blocked_packages, blocked_domains, whitelist_domains or blocked_keywords

    Request Body:
        {"values": ["example.com", ...]}
    """
    logger.debug(f"PUT /api/policy/lists/{name} called")

    if not is_authorized():
        return not_authorized(POLICY_NOT_AUTHORIZED)

    if name not in LIST_KEYS:
        return error_response(
            POLICY_UNKNOWN_KEY,
            f"Liste inconnue: {name}",
            404,
            {"allowed": list(LIST_KEYS)},
        )

    data = request.get_json(silent=True)
    values = data.get("values") if isinstance(data, dict) else None
    if not isinstance(values, list):
        return error_response(POLICY_INVALID_VALUE, "Champ 'values' (liste) requis", 400)

    try:
        stored = _store().set_list(name, values)
    except PolicyError as exc:
        return error_response(exc.code, exc.message, 400, exc.details)

    logger.info(f"Policy list replaced (name={name}, count={len(stored)})")
    return jsonify({
        "success": True,
        "result": {"name": name, "values": sorted(stored), "count": len(stored)},
    }), 200


@api_bp.route('/policy/unlocks', methods=['POST'])
def add_unlock():
    """Add a temporary unlock.

    Request Body:
        {"package": "com.game", "expires_at_ms": 1700000000000}
        or {"package": "com.game", "minutes": 15}

    Returns:
        201: Unlock added
        400: Missing package or expiry
        403: Not authorized
    """
    logger.debug("POST /api/policy/unlocks called")

    if not is_authorized():
        return not_authorized(POLICY_NOT_AUTHORIZED)

    data = request.get_json(silent=True) or {}
    package = data.get("package")
    if not isinstance(package, str) or not package.strip():
        return error_response(POLICY_INVALID_VALUE, "Champ 'package' requis", 400)

    store = _store()
    clock = current_app.extensions['dispatcher'].clock
    try:
        if "expires_at_ms" in data:
            expires_at_ms = int(data["expires_at_ms"])
        elif "minutes" in data:
            expires_at_ms = clock() + int(data["minutes"]) * 60 * 1000
        else:
            return error_response(POLICY_INVALID_VALUE, "Champ 'expires_at_ms' ou 'minutes' requis", 400)
    except (TypeError, ValueError):
        return error_response(POLICY_INVALID_VALUE, "Expiration invalide", 400)

    store.add_temporary_unlock(package, expires_at_ms)
    return jsonify({
        "success": True,
        "result": {
            "package": package.strip(),
            "expires_at_ms": expires_at_ms,
            "unlocks": [u.to_dict() for u in store.get_temporary_unlocks()],
        },
    }), 201


@api_bp.route('/policy/unlocks/thirty-minutes', methods=['POST'])
def add_thirty_minutes():
    """Unlock the last foreground app for 30 minutes."""
    logger.debug("POST /api/policy/unlocks/thirty-minutes called")

    if not is_authorized():
        return not_authorized(POLICY_NOT_AUTHORIZED)

    store = _store()
    controlling = current_app.extensions['foreground'].host.controlling_package
    added = store.add_thirty_minutes(controlling)

    return jsonify({
        "success": True,
        "result": {
            "added": added,
            "package": store.last_foreground_package if added else None,
            "unlocks": [u.to_dict() for u in store.get_temporary_unlocks()],
        },
    }), 200


@api_bp.route('/policy/reload', methods=['POST'])
def reload_policy():
    """Reload the policy file from disk."""
    logger.debug("POST /api/policy/reload called")

    if not is_authorized():
        return not_authorized(POLICY_NOT_AUTHORIZED)

    try:
        policy = _store().reload()
    except PolicyError as exc:
        return error_response(exc.code, exc.message, 409, exc.details)

    return jsonify({
        "success": True,
        "result": policy.to_dict(),
    }), 200
