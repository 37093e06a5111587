"""KIDSHIELD Application Factory.

This module provides the application factory pattern for creating Flask
application instances with the appropriate configuration. The factory
wires the two enforcement engines and stores them in app.extensions.
"""

import functools
import hmac
from pathlib import Path

from flask import Flask

from app.config import config


def create_app(config_name='default'):
    """Create and configure the Flask application.

    Args:
        config_name: Configuration name ('development', 'testing', 'production', 'default')

    Returns:
        Flask: Configured Flask application instance
    """
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Configure logging
    _configure_logging(app, config_name)

    # Load kidshield.yaml
    settings = _load_settings(app)

    # Policy store shared by both engines
    _configure_policy(app, settings.get('policy') or {})

    # DNS sinkhole engine
    _configure_sinkhole(app, settings.get('sinkhole') or {})

    # Foreground enforcement engine
    _configure_foreground(app, settings.get('foreground') or {})

    # Authorization predicate for privileged actions
    _configure_authorization(app)

    # Register blueprints
    _register_blueprints(app)

    # Register error handlers
    _register_error_handlers(app)

    app.logger.info(f'Application created (config={config_name})')

    return app


def _configure_logging(app, config_name):
    """Configure application logging with KIDSHIELD structured format.

    Args:
        app: Flask application instance
        config_name: Current configuration name
    """
    from app.logging_config import configure_logging
    configure_logging(app, config_name)


def _base_path(app) -> Path:
    return Path(app.root_path).parent


def _load_settings(app) -> dict:
    """Load kidshield.yaml; missing or invalid file -> built-in defaults."""
    import yaml

    config_path = _base_path(app) / app.config['KIDSHIELD_CONFIG_PATH']
    if not config_path.exists():
        app.logger.warning(f'Config file not found: {config_path}')
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        app.logger.error(f'Failed to read config file (path={config_path}, error={str(e)})')
        return {}

    if not isinstance(data, dict):
        app.logger.error(f'Config file is not a mapping (path={config_path})')
        return {}
    return data


def _configure_policy(app, policy_config):
    """Create the policy store and its optional hot-reload watcher.

    Args:
        app: Flask application instance
        policy_config: 'policy' section of kidshield.yaml
    """
    from app.services import PolicyFileWatcher, get_policy_store

    filepath = None
    if not app.config['KIDSHIELD_POLICY_IN_MEMORY']:
        path_value = app.config.get('KIDSHIELD_POLICY_PATH') or policy_config.get(
            'path', 'data/policy/policy.json'
        )
        filepath = Path(path_value)
        if not filepath.is_absolute():
            filepath = _base_path(app) / filepath

    store = get_policy_store(filepath)
    app.extensions['policy_store'] = store

    policy = store.policy
    app.logger.info(
        f'Policy configured (path={store.filepath}, blocked_apps={len(policy.blocked_apps)}, '
        f'blocked_domains={len(policy.blocked_domains)})'
    )

    if app.config['KIDSHIELD_WATCH_POLICY'] and policy_config.get('reload_on_change', False):
        watcher = PolicyFileWatcher(store)
        if watcher.start():
            app.extensions['policy_watcher'] = watcher
        else:
            app.logger.warning('Failed to start policy hot-reload watcher')


def _configure_sinkhole(app, sinkhole_config):
    """Create the DNS settings, notifier and sinkhole engine.

    Args:
        app: Flask application instance
        sinkhole_config: 'sinkhole' section of kidshield.yaml
    """
    from app.core.sinkhole import (
        RESOLVER_ROUTES,
        DnsSinkholeEngine,
        TunInterface,
        UpstreamForwarder,
    )
    from app.core.sinkhole.upstream import FORWARD_TIMEOUT_MS, uplink_protector
    from app.models.sinkhole import SinkholeError
    from app.services import BlockedDomainNotifier, get_dns_settings

    settings = get_dns_settings()
    upstream = sinkhole_config.get('upstream_dns')
    if upstream:
        try:
            settings.set_upstream(str(upstream))
        except ValueError:
            app.logger.error(f'Invalid upstream_dns in config, keeping default (value={upstream})')

    interface_factory = functools.partial(
        TunInterface.open,
        name=sinkhole_config.get('tun_name', 'kidshield0'),
        address=sinkhole_config.get('local_address', '10.0.0.2'),
        routes=tuple(sinkhole_config.get('resolver_routes') or RESOLVER_ROUTES),
        mtu=int(sinkhole_config.get('mtu', 1500)),
    )
    forwarder = UpstreamForwarder(
        settings,
        timeout_ms=int(sinkhole_config.get('forward_timeout_ms', FORWARD_TIMEOUT_MS)),
        protect=uplink_protector(sinkhole_config.get('uplink_interface', 'auto')),
    )
    notifier = BlockedDomainNotifier()
    engine = DnsSinkholeEngine(
        settings,
        app.extensions['policy_store'],
        interface_factory,
        forwarder,
        notifier=notifier,
    )

    app.extensions['dns_settings'] = settings
    app.extensions['blocked_notifier'] = notifier
    app.extensions['sinkhole'] = engine

    autostart = app.config.get('KIDSHIELD_SINKHOLE_AUTOSTART')
    if autostart is None:
        autostart = bool(sinkhole_config.get('autostart', False))
    if autostart:
        try:
            engine.start()
        except SinkholeError as e:
            app.logger.error(f'Sinkhole autostart failed (code={e.code}, error={e.message})')

    app.logger.info(
        f'Sinkhole configured (upstream={settings.upstream}, '
        f'blacklist={len(settings.blacklist)}, autostart={autostart})'
    )


def _configure_foreground(app, foreground_config):
    """Create the dispatcher, action sink and foreground engine.

    Args:
        app: Flask application instance
        foreground_config: 'foreground' section of kidshield.yaml
    """
    from app.core.foreground import (
        EventDispatcher,
        ForegroundEnforcementEngine,
        QueuedActionSink,
    )
    from app.core.foreground.screen_content import ScreenSnapshot
    from app.models.foreground import HostProfile

    defaults = HostProfile(controlling_package='com.kidshield.app')
    host = HostProfile(
        controlling_package=foreground_config.get('controlling_package', defaults.controlling_package),
        app_label=foreground_config.get('app_label', defaults.app_label),
        settings_package=foreground_config.get('settings_package', defaults.settings_package),
        system_ui_package=foreground_config.get('system_ui_package', defaults.system_ui_package),
        alarm_packages=frozenset(foreground_config.get('alarm_packages') or defaults.alarm_packages),
        browser_packages=frozenset(foreground_config.get('extra_browsers') or ()),
        launcher_package=foreground_config.get('launcher_package'),
        ime_package=foreground_config.get('ime_package'),
    )

    dispatcher = EventDispatcher()
    sink = QueuedActionSink(dispatcher.clock)
    screen = ScreenSnapshot()
    engine = ForegroundEnforcementEngine(
        app.extensions['policy_store'],
        host,
        sink,
        dispatcher,
        screen,
    )

    app.extensions['dispatcher'] = dispatcher
    app.extensions['action_sink'] = sink
    app.extensions['screen'] = screen
    app.extensions['foreground'] = engine

    if app.config['KIDSHIELD_START_DISPATCHER']:
        dispatcher.start()

    app.logger.info(
        f'Foreground engine configured (controlling_package={host.controlling_package}, '
        f'dispatcher_started={dispatcher.is_running})'
    )


def _configure_authorization(app):
    """Install the "is this action authorized" predicate.

    The PIN itself lives with the host; the control surface only checks
    the shared token the host sends in X-KidShield-Token.
    """
    token = app.config.get('KIDSHIELD_CONTROL_TOKEN')

    def is_authorized(request) -> bool:
        if not token:
            return True
        supplied = request.headers.get('X-KidShield-Token', '')
        return hmac.compare_digest(supplied.encode('utf-8'), token.encode('utf-8'))

    app.extensions['authorize'] = is_authorized
    if not token:
        app.logger.warning('No control token configured, privileged actions are open')


def _register_blueprints(app):
    """Register all application blueprints.

    Args:
        app: Flask application instance
    """
    from app.blueprints.api import api_bp

    app.register_blueprint(api_bp, url_prefix='/api')


def _register_error_handlers(app):
    """Register custom error handlers.

    Args:
        app: Flask application instance
    """
    from flask import jsonify

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({
            'success': False,
            'error': {
                'code': 'SYSTEM_NOT_FOUND',
                'message': 'The requested resource was not found',
                'details': {}
            }
        }), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({
            'success': False,
            'error': {
                'code': 'SYSTEM_METHOD_NOT_ALLOWED',
                'message': 'The method is not allowed for the requested URL',
                'details': {}
            }
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            'success': False,
            'error': {
                'code': 'SYSTEM_INTERNAL_ERROR',
                'message': 'An internal server error occurred',
                'details': {}
            }
        }), 500
