"""
Pytest fixtures for hubkit tests.
"""

import pytest

from hubkit import AuthConfig, AuthVerifier, ContractRegistry, Role
from hubkit.app import create_app
from hubkit.config import Config


JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class AppTestConfig(Config):
    TESTING = True
    JWT_SECRET = JWT_SECRET
    JWT_ALGORITHM = "HS256"
    JWT_ISSUER = None
    JWT_AUDIENCE = None
    JWT_LEEWAY_SECONDS = 0
    API_TITLE = "Test API"
    API_VERSION = "1.2.3"
    API_DESCRIPTION = "API under test"
    API_SERVERS = ["http://localhost:5000"]
    CORS_ORIGINS = ["*"]


@pytest.fixture
def auth_config():
    return AuthConfig(secret=JWT_SECRET)


@pytest.fixture
def verifier(auth_config):
    return AuthVerifier(auth_config)


@pytest.fixture
def registry():
    """Fresh, unsealed registry per test."""
    return ContractRegistry()


@pytest.fixture
def make_client(registry):
    """
    Build a test client for whatever the test registered.

    Call after registering contracts: create_app seals the registry.
    """
    def _make(config=AppTestConfig):
        app = create_app(registry, config)
        app.config['TESTING'] = True
        return app.test_client()
    return _make


@pytest.fixture
def auth_headers(verifier):
    """Authorization headers carrying a freshly issued token."""
    def _headers(role=Role.MEMBER, subject="user-1", **claims):
        token = verifier.issue_token(subject, role=role, **claims)
        return {"Authorization": f"Bearer {token}"}
    return _headers
