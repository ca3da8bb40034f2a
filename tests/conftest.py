"""Shared fixtures: a throwaway SQLite DB per test and an app wired to it."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from paper_nexus.api.server import create_app
from paper_nexus.auth import tokens
from paper_nexus.auth.crud import create_user
from paper_nexus.auth.tokens import SessionToken
from paper_nexus.config import Config
from paper_nexus.db import connect, init_db

TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef0123456789abcdef"
TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef"


@pytest.fixture
def make_cfg(tmp_path):
    base = Config(
        ENV="test",
        DB_DSN=str(tmp_path / "paper_nexus_test.sqlite"),
        LOG_LEVEL="WARNING",
        LOG_STRUCTURED=False,
        LOG_FILE=None,
        JWT_SECRET=TEST_JWT_SECRET,
        AUTH_COOKIE_SECURE=False,
        AUTH_COOKIE_DOMAIN=None,
        AUTH_COOKIE_SAMESITE="lax",
        REQUIRE_EMAIL_VERIFICATION=False,
        LOGIN_MAX_ATTEMPTS=5,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD="",
        FORUM_EDIT_WINDOW_HOURS=24,
        API_SIGNATURE_KEY=TEST_SIGNING_KEY,
        PAPERS_API_URL="http://papers.upstream.test",
        SMTP_HOST=None,
        SMTP_USER=None,
        SMTP_PASSWORD=None,
        REDIS_URL=None,
        CORS_ALLOW_ORIGINS="",
    )

    def _make(**overrides):
        return replace(base, **overrides)

    return _make


@pytest.fixture
def cfg(make_cfg):
    c = make_cfg()
    init_db(c.DB_DSN)
    return c


@pytest.fixture
def client(cfg):
    with TestClient(create_app(cfg)) as c:
        yield c


@pytest.fixture
def make_user(cfg):
    """Create a verified user directly in the DB and return its public dict."""

    def _make(username, role="user", password="correct-horse-1", email=None):
        with connect(cfg.DB_DSN) as conn:
            return create_user(
                conn,
                username=username,
                email=email or f"{username}@example.com",
                password=password,
                role=role,
                verified=True,
            )

    return _make


@pytest.fixture
def auth_headers(cfg):
    def _headers(user):
        pair = tokens.issue(cfg, user)
        return {"Authorization": f"Bearer {pair.access_token}"}

    return _headers


def as_actor(user):
    now = datetime.now(timezone.utc)
    return SessionToken(
        user_id=int(user["user_id"]),
        username=user["username"],
        role=user["role"],
        token_type=tokens.ACCESS,
        issued_at=now,
        expires_at=now,
        jti="test",
    )


@pytest.fixture
def actor():
    return as_actor
