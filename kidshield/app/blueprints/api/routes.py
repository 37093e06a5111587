"""API routes for KIDSHIELD."""

import logging
from flask import jsonify, current_app

from . import api_bp
from app.services.thread_manager import get_thread_manager

logger = logging.getLogger(__name__)


@api_bp.route('/health')
def health_check():
    """Health check endpoint.

    Returns:
        JSON response with status and version
    """
    return jsonify({
        'status': 'ok',
        'version': '0.1.0'
    }), 200


@api_bp.route('/status')
def get_status():
    """Combined status of both engines and the policy store.

    Returns:
        JSON response with sinkhole, foreground and policy summaries
    """
    logger.debug('GET /api/status called')

    extensions = current_app.extensions
    store = extensions['policy_store']
    policy = store.policy
    foreground = extensions['foreground']
    dispatcher = extensions['dispatcher']

    return jsonify({
        'success': True,
        'result': {
            'sinkhole': extensions['sinkhole'].get_status(),
            'foreground': {
                'dispatcher_running': dispatcher.is_running,
                'pending_tasks': dispatcher.pending_tasks,
                'state': foreground.state.to_dict(),
            },
            'policy': {
                'blocking_enabled': policy.blocking_enabled,
                'rest_mode_active': policy.rest_mode_active,
                'kill_switch_active': policy.kill_switch_active,
                'url_blocking_enabled': policy.url_blocking_enabled,
                'anti_tampering_enabled': policy.anti_tampering_enabled,
                'blocked_apps_count': len(policy.blocked_apps),
                'persisted': store.filepath is not None,
            },
            'workers': get_thread_manager().get_worker_status(),
        },
    }), 200
