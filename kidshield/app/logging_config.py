"""KIDSHIELD logging configuration.

Every line follows the architecture standard:
[YYYY-MM-DD HH:MM:SS][LEVEL][module.submodule] Message (key=value)

Short names drop the package plumbing so the two engines read apart:
    app.services.policy_store -> services.policy_store
    app.blueprints.api.sinkhole -> api.sinkhole
    app.core.sinkhole.sinkhole_engine -> sinkhole.sinkhole
    app.core.foreground.enforcement_engine -> foreground.enforcement

Story 1.1: Socle applicatif
- Level from KIDSHIELD_LOG_LEVEL, else DEBUG in debug mode, else INFO
- Optional rotating file (KIDSHIELD_LOG_FILE) next to the console stream
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = '[%(asctime)s][%(levelname)s][%(shortname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    'werkzeug': logging.WARNING,
    'scapy': logging.ERROR,
    'scapy.runtime': logging.ERROR,
    'watchdog': logging.WARNING,
}


class KidShieldFormatter(logging.Formatter):
    """Formatter exposing %(shortname)s, the shortened logger name."""

    # Leading path segments dropped in order (app.blueprints.api -> api)
    PREFIXES_TO_STRIP = ('app.', 'blueprints.')
    # At most one of these is dropped from the last segment
    SUFFIXES_TO_STRIP = ('_engine', '_manager', '_codec', '_handler', '_service')

    def __init__(self, fmt: str = LOG_FORMAT, datefmt: str = DATE_FORMAT):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._cache: dict[str, str] = {}

    def format(self, record: logging.LogRecord) -> str:
        record.shortname = self._get_short_name(record.name)
        return super().format(record)

    def _get_short_name(self, name: str) -> str:
        """Transform a logger name into its short form.

        Args:
            name: Full Python module path (e.g., 'app.core.sinkhole.dns_codec')

        Returns:
            Short module name (e.g., 'sinkhole.dns')
        """
        short = self._cache.get(name)
        if short is not None:
            return short

        short = name
        for prefix in self.PREFIXES_TO_STRIP:
            if short.startswith(prefix):
                short = short[len(prefix):]

        short = next(
            (short[:-len(s)] for s in self.SUFFIXES_TO_STRIP if short.endswith(s)),
            short,
        )

        # core.* is implied: core.foreground.dispatcher -> foreground.dispatcher
        if short.startswith('core.'):
            short = short[5:]

        self._cache[name] = short
        return short


def _resolve_level(app) -> int:
    configured = app.config.get('KIDSHIELD_LOG_LEVEL')
    if configured:
        level = logging.getLevelName(str(configured).upper())
        if isinstance(level, int):
            return level
    return logging.DEBUG if app.config.get('DEBUG') else logging.INFO


def configure_logging(app, config_name: str = 'default') -> None:
    """Install the KIDSHIELD formatter on the root logger.

    Replaces any existing root handlers so repeated app creation (tests)
    never duplicates lines.

    Args:
        app: Flask application instance.
        config_name: Configuration name (logged once handlers are in place).
    """
    log_level = _resolve_level(app)
    formatter = KidShieldFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file = app.config.get('KIDSHIELD_LOG_FILE')
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding='utf-8',
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).debug(
        f'Logging configured (config={config_name}, level={logging.getLevelName(log_level)}, '
        f'file={log_file or "-"})'
    )
