"""DNS sinkhole API endpoints for KIDSHIELD.

Provides REST API for the sinkhole lifecycle, the DNS blacklist, the
upstream resolver and the blocked-domain history.

Story 3.1: Sinkhole DNS local
"""

import logging

from flask import current_app, jsonify, request

from . import api_bp, error_response, is_authorized, not_authorized
from app.models.sinkhole import (
    SINKHOLE_ALREADY_RUNNING,
    SINKHOLE_NOT_AUTHORIZED,
    SinkholeError,
)

logger = logging.getLogger(__name__)

SINKHOLE_INVALID_UPSTREAM = "SINKHOLE_INVALID_UPSTREAM"
SINKHOLE_INVALID_BLACKLIST = "SINKHOLE_INVALID_BLACKLIST"
SINKHOLE_DOMAIN_NOT_FOUND = "SINKHOLE_DOMAIN_NOT_FOUND"


def _engine():
    return current_app.extensions['sinkhole']


def _settings():
    return current_app.extensions['dns_settings']


@api_bp.route('/sinkhole/status', methods=['GET'])
def sinkhole_status():
    """Get sinkhole lifecycle status and packet counters."""
    return jsonify({
        "success": True,
        "result": _engine().get_status(),
    }), 200


@api_bp.route('/sinkhole/start', methods=['POST'])
def start_sinkhole():
    """Start the DNS sinkhole.

    Returns:
        200: Sinkhole running
        403: Not authorized
        409: Already running
        500: Interface or socket could not be established
    """
    logger.info("POST /api/sinkhole/start called")

    if not is_authorized():
        return not_authorized(SINKHOLE_NOT_AUTHORIZED)

    engine = _engine()
    try:
        engine.start()
    except SinkholeError as e:
        status = 409 if e.code == SINKHOLE_ALREADY_RUNNING else 500
        return jsonify({"success": False, "error": e.to_dict()}), status

    return jsonify({
        "success": True,
        "result": engine.get_status(),
    }), 200


@api_bp.route('/sinkhole/stop', methods=['POST'])
def stop_sinkhole():
    """Stop the DNS sinkhole (idempotent)."""
    logger.info("POST /api/sinkhole/stop called")

    if not is_authorized():
        return not_authorized(SINKHOLE_NOT_AUTHORIZED)

    engine = _engine()
    stopped = engine.stop()

    return jsonify({
        "success": True,
        "result": {"stopped": stopped, **engine.get_status()},
    }), 200


@api_bp.route('/sinkhole/blacklist', methods=['GET'])
def get_blacklist():
    """Return the DNS settings (blacklist + upstream)."""
    return jsonify({
        "success": True,
        "result": _settings().to_dict(),
    }), 200


@api_bp.route('/sinkhole/blacklist', methods=['PUT'])
def replace_blacklist():
    """Replace the whole DNS blacklist.

    Request Body:
        {"domains": ["bet365.com", ...]}
    """
    if not is_authorized():
        return not_authorized(SINKHOLE_NOT_AUTHORIZED)

    data = request.get_json(silent=True)
    domains = data.get("domains") if isinstance(data, dict) else None
    if not isinstance(domains, list):
        return error_response(SINKHOLE_INVALID_BLACKLIST, "Champ 'domains' (liste) requis", 400)

    blacklist = _settings().update_blacklist(domains)
    return jsonify({
        "success": True,
        "result": {"blacklist": sorted(blacklist), "count": len(blacklist)},
    }), 200


@api_bp.route('/sinkhole/blacklist/<domain>', methods=['POST'])
def add_blacklist_domain(domain):
    """Add one domain to the DNS blacklist."""
    if not is_authorized():
        return not_authorized(SINKHOLE_NOT_AUTHORIZED)

    added = _settings().add_to_blacklist(domain)
    return jsonify({
        "success": True,
        "result": {"domain": domain.strip().lower(), "added": added},
    }), 201 if added else 200


@api_bp.route('/sinkhole/blacklist/<domain>', methods=['DELETE'])
def remove_blacklist_domain(domain):
    """Remove one domain from the DNS blacklist."""
    if not is_authorized():
        return not_authorized(SINKHOLE_NOT_AUTHORIZED)

    if not _settings().remove_from_blacklist(domain):
        return error_response(
            SINKHOLE_DOMAIN_NOT_FOUND,
            f"Domaine {domain} absent de la blacklist",
            404,
        )
    return jsonify({
        "success": True,
        "result": {"domain": domain.strip().lower(), "removed": True},
    }), 200


@api_bp.route('/sinkhole/upstream', methods=['PUT'])
def set_upstream():
    """Change the upstream resolver.

    Request Body:
        {"address": "1.1.1.1"}
    """
    if not is_authorized():
        return not_authorized(SINKHOLE_NOT_AUTHORIZED)

    data = request.get_json(silent=True) or {}
    address = data.get("address")
    if not isinstance(address, str):
        return error_response(SINKHOLE_INVALID_UPSTREAM, "Champ 'address' requis", 400)

    settings = _settings()
    try:
        changed = settings.set_upstream(address)
    except ValueError:
        return error_response(
            SINKHOLE_INVALID_UPSTREAM,
            "Adresse IPv4 invalide",
            400,
            {"address": address},
        )

    return jsonify({
        "success": True,
        "result": {"upstream": settings.upstream, "changed": changed},
    }), 200


@api_bp.route('/sinkhole/blocked', methods=['GET'])
def recent_blocked():
    """Most recent blocked DNS queries, newest first.

    Query Params:
        limit: maximum number of events (default: all kept)
    """
    limit = request.args.get("limit", type=int)
    events = current_app.extensions['blocked_notifier'].recent(limit)
    return jsonify({
        "success": True,
        "result": {
            "events": [e.to_dict() for e in events],
            "count": len(events),
        },
    }), 200
