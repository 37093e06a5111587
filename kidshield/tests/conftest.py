"""Pytest fixtures for KIDSHIELD tests."""

import pytest

from app import create_app
from app.services.dns_settings import reset_dns_settings
from app.services.policy_store import reset_policy_store
from app.services.thread_manager import reset_thread_manager


def _reset_singletons():
    reset_policy_store()
    reset_dns_settings()
    reset_thread_manager()


@pytest.fixture
def app():
    """Create application for testing.

    Returns:
        Flask: Application configured for testing (in-memory policy,
        no background threads)
    """
    _reset_singletons()
    app = create_app('testing')
    yield app
    app.extensions['sinkhole'].stop()
    app.extensions['dispatcher'].stop()
    _reset_singletons()


@pytest.fixture
def client(app):
    """Create test client.

    Args:
        app: Flask application fixture

    Returns:
        FlaskClient: Test client for making requests
    """
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create test CLI runner.

    Args:
        app: Flask application fixture

    Returns:
        FlaskCliRunner: CLI runner for testing commands
    """
    return app.test_cli_runner()
