"""Unit tests for logging_config module."""

import logging

from flask import Flask

from app.logging_config import KidShieldFormatter, configure_logging


def _record(name, level=logging.INFO, msg='Test message'):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname='',
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestKidShieldFormatterShortName:
    """Tests for _get_short_name transformation."""

    def setup_method(self):
        """Create formatter instance for each test."""
        self.formatter = KidShieldFormatter()

    def test_removes_app_prefix(self):
        """Test that 'app.' prefix is removed."""
        assert self.formatter._get_short_name('app.services.policy_store') == 'services.policy_store'

    def test_removes_app_and_blueprints_prefix(self):
        """Test that 'app.blueprints.' is collapsed to just the blueprint name."""
        assert self.formatter._get_short_name('app.blueprints.api.routes') == 'api.routes'
        assert self.formatter._get_short_name('app.blueprints.api.sinkhole') == 'api.sinkhole'

    def test_removes_core_prefix(self):
        """Test that 'core.' prefix is removed."""
        assert self.formatter._get_short_name('app.core.foreground.dispatcher') == 'foreground.dispatcher'
        assert self.formatter._get_short_name('app.core.sinkhole.upstream') == 'sinkhole.upstream'

    def test_removes_engine_suffix(self):
        assert self.formatter._get_short_name('app.core.sinkhole.sinkhole_engine') == 'sinkhole.sinkhole'
        assert self.formatter._get_short_name('app.core.foreground.enforcement_engine') == 'foreground.enforcement'

    def test_removes_codec_suffix(self):
        assert self.formatter._get_short_name('app.core.sinkhole.dns_codec') == 'sinkhole.dns'

    def test_removes_manager_suffix(self):
        """Test that '_manager' suffix is stripped."""
        assert self.formatter._get_short_name('app.services.thread_manager') == 'services.thread'

    def test_preserves_name_without_app_prefix(self):
        """Test that names without 'app.' prefix are handled."""
        assert self.formatter._get_short_name('werkzeug.serving') == 'werkzeug.serving'

    def test_handles_simple_names(self):
        assert self.formatter._get_short_name('app') == 'app'
        assert self.formatter._get_short_name('root') == 'root'


class TestKidShieldFormatterFormat:
    """Tests for log record formatting."""

    def setup_method(self):
        self.formatter = KidShieldFormatter()

    def test_format_includes_short_name(self):
        formatted = self.formatter.format(_record('app.services.policy_watcher'))

        assert '[services.policy_watcher]' in formatted
        assert 'Test message' in formatted
        assert '[INFO]' in formatted

    def test_format_with_core_module(self):
        formatted = self.formatter.format(
            _record('app.core.sinkhole.sinkhole_engine', logging.WARNING, 'DNS query blocked')
        )
        assert '[sinkhole.sinkhole]' in formatted
        assert '[WARNING]' in formatted

    def test_format_includes_timestamp(self):
        formatted = self.formatter.format(_record('app.services.test'))
        assert formatted.startswith('[20')
        assert '][' in formatted


class TestConfigureLogging:
    """Tests for configure_logging."""

    def teardown_method(self):
        for handler in logging.getLogger().handlers[:]:
            logging.getLogger().removeHandler(handler)

    def test_debug_level_in_debug_mode(self):
        app = Flask(__name__)
        app.config['DEBUG'] = True
        configure_logging(app, 'development')
        assert logging.getLogger().level == logging.DEBUG

    def test_single_handler_with_formatter(self):
        app = Flask(__name__)
        configure_logging(app)
        configure_logging(app)

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, KidShieldFormatter)

    def test_explicit_level_wins(self):
        app = Flask(__name__)
        app.config['DEBUG'] = True
        app.config['KIDSHIELD_LOG_LEVEL'] = 'warning'
        configure_logging(app)
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back(self):
        app = Flask(__name__)
        app.config['KIDSHIELD_LOG_LEVEL'] = 'chatty'
        configure_logging(app)
        assert logging.getLogger().level == logging.INFO

    def test_rotating_file_handler(self, tmp_path):
        log_file = tmp_path / 'logs' / 'kidshield.log'
        app = Flask(__name__)
        app.config['KIDSHIELD_LOG_FILE'] = str(log_file)
        configure_logging(app)

        logging.getLogger('app.core.sinkhole.sinkhole_engine').info('DNS query blocked (domain=bet365.com)')
        for handler in logging.getLogger().handlers:
            handler.flush()
            handler.close()

        content = log_file.read_text(encoding='utf-8')
        assert '[INFO][sinkhole.sinkhole] DNS query blocked (domain=bet365.com)' in content

    def test_quiets_third_party_loggers(self):
        configure_logging(Flask(__name__))
        assert logging.getLogger('werkzeug').level == logging.WARNING
        assert logging.getLogger('scapy').level == logging.ERROR
        assert logging.getLogger('watchdog').level == logging.WARNING
