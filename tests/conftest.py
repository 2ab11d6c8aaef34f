"""
Global pytest configuration and fixtures.

Provides the Flask application and test client used by the wiring tests, the
default marshmallow engine and a recording failure location resolver for the
unit tests.
"""

import pytest
import structlog

from request_dto import MarshmallowValidationEngine, SchemaFactory
from request_dto.monitoring import setup_structured_logging
from tests.fixtures.app import create_test_app
from tests.fixtures.redirects import RecordingRedirector

logger = structlog.get_logger("tests.conftest")


def pytest_configure(config):
    """Configure console logging for the test session."""
    setup_structured_logging(level="WARNING", log_format="console")


@pytest.fixture
def app():
    """Flask application with the RequestDTO extension installed."""
    flask_app = create_test_app()
    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def client(app):
    """Flask test client for HTTP request simulation."""
    return app.test_client()


@pytest.fixture
def engine():
    """Default marshmallow validation engine."""
    return MarshmallowValidationEngine()


@pytest.fixture
def factory():
    """Schema factory without registered builders."""
    return SchemaFactory()


@pytest.fixture
def redirector():
    """Failure location resolver recording which hint was used."""
    return RecordingRedirector()
