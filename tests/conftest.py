"""
Pytest configuration and fixtures.
"""

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from vcare_access.api.server import create_app
from vcare_access.auth.crud import assign_role, create_user, load_identity, set_share_balance
from vcare_access.config import Config
from vcare_access.db import connect, init_db


TEST_SECRET = "test-secret-do-not-use-in-prod-0123456789"


@pytest.fixture
def cfg(tmp_path):
    """Config pointing at a fresh SQLite file, with a known signing secret."""
    return replace(
        Config(),
        DB_DSN=str(tmp_path / "vcare.sqlite"),
        AUTH_JWT_SECRET=TEST_SECRET,
        AUTH_BOOTSTRAP_ADMIN_EMAIL=None,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=None,
        CORS_ALLOW_ORIGINS="",
        LOGIN_RATE_LIMIT=1000,
        LOGIN_RATE_WINDOW_SECONDS=60,
        ROLE_TABLES_VERSION="v2",
        ROLE_TABLES_PATH=None,
        SHAREHOLDER_MIN_SHARES=100.0,
        AUTH_COOKIE_SECURE=False,
    )


@pytest.fixture
def db(cfg):
    init_db(cfg.DB_DSN)
    return cfg.DB_DSN


@pytest.fixture
def make_user(db):
    """Create a user directly in the store; returns the loaded Identity."""

    def _make(email, password="correct-horse-battery", *, role="customer", extra_roles=(), shares=0, name="Test"):
        with connect(db) as conn:
            ident = create_user(conn, email=email, password=password, name=name, role=role)
            for r in extra_roles:
                assign_role(conn, ident.id, r)
            if shares:
                set_share_balance(conn, ident.id, shares)
            return load_identity(conn, ident.id)

    return _make


@pytest.fixture
def app(cfg):
    return create_app(cfg)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
