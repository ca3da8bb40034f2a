"""Session token issue / verify / refresh."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from paper_nexus.auth import tokens
from paper_nexus.auth.tokens import ExpiredTokenError, InvalidTokenError

SECRET = "unit-test-secret-0123456789abcdef0123456789"
USER = {"user_id": 42, "username": "alice", "role": "user"}


def _token(token_type=tokens.ACCESS, *, secret=SECRET, lifetime=timedelta(hours=1), now=None, role="user"):
    return tokens._encode(
        secret=secret,
        user_id=42,
        username="alice",
        role=role,
        token_type=token_type,
        lifetime=lifetime,
        now=now,
    )


class TestIssue:
    def test_pair_claims(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET)
        pair = tokens.issue(cfg, USER)

        access = tokens.verify(pair.access_token, secret=SECRET)
        assert (access.user_id, access.username, access.role) == (42, "alice", "user")
        assert access.token_type == "access"

        refresh = tokens.verify(pair.refresh_token, secret=SECRET, expected_type=tokens.REFRESH)
        assert refresh.user_id == 42
        assert refresh.expires_at > access.expires_at

    def test_lifetimes(self, make_cfg):
        cfg = make_cfg(
            JWT_SECRET=SECRET,
            ACCESS_TOKEN_EXPIRE_MINUTES=1440,
            REMEMBER_ME_EXPIRE_DAYS=30,
            REFRESH_TOKEN_EXPIRE_DAYS=90,
        )
        short = tokens.issue(cfg, USER)
        long = tokens.issue(cfg, USER, remember_me=True)
        assert short.access_max_age == 24 * 3600
        assert long.access_max_age == 30 * 24 * 3600
        assert short.refresh_max_age == 90 * 24 * 3600

    def test_unknown_role_is_refused(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET)
        with pytest.raises(ValueError):
            tokens.issue(cfg, {"user_id": 1, "username": "x", "role": "root"})


class TestVerify:
    def test_other_secret_fails(self):
        t = _token(secret=SECRET)
        with pytest.raises(InvalidTokenError):
            tokens.verify(t, secret=SECRET + "-other")

    def test_expired_fails_even_with_good_signature(self):
        past = datetime.now(timezone.utc) - timedelta(days=2)
        t = _token(now=past, lifetime=timedelta(hours=1))
        with pytest.raises(ExpiredTokenError):
            tokens.verify(t, secret=SECRET)

    def test_expired_is_an_invalid_token(self):
        assert issubclass(ExpiredTokenError, InvalidTokenError)

    def test_tampered_payload_fails(self):
        header, payload, sig = _token().split(".")
        forged = jwt.encode({"sub": "1", "role": "admin"}, "x" * 32, algorithm="HS256").split(".")[1]
        with pytest.raises(InvalidTokenError):
            tokens.verify(".".join([header, forged, sig]), secret=SECRET)

    @pytest.mark.parametrize("garbage", [None, "", "abc", "a.b.c"])
    def test_garbage_fails(self, garbage):
        with pytest.raises(InvalidTokenError):
            tokens.verify(garbage, secret=SECRET)

    def test_refresh_token_is_not_an_access_token(self):
        with pytest.raises(InvalidTokenError):
            tokens.verify(_token(tokens.REFRESH), secret=SECRET)
        with pytest.raises(InvalidTokenError):
            tokens.verify(_token(tokens.ACCESS), secret=SECRET, expected_type=tokens.REFRESH)

    def test_payload_shape(self):
        ident = tokens.verify(_token(), secret=SECRET)
        payload = ident.to_payload()
        assert set(payload) == {"user_id", "username", "role", "issued_at", "expires_at"}
        assert payload["expires_at"] > payload["issued_at"]


class TestRefresh:
    def test_mints_access_for_same_identity(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET, ACCESS_TOKEN_EXPIRE_MINUTES=1440)
        pair = tokens.issue(cfg, USER)
        ident, access, max_age = tokens.refresh(cfg, pair.refresh_token)
        assert ident.user_id == 42
        assert tokens.verify(access, secret=SECRET).user_id == 42
        assert max_age == 24 * 3600

    def test_remember_me_is_not_carried_and_refresh_expiry_is_kept(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET, ACCESS_TOKEN_EXPIRE_MINUTES=1440, REMEMBER_ME_EXPIRE_DAYS=30)
        pair = tokens.issue(cfg, USER, remember_me=True)
        assert pair.access_max_age == 30 * 24 * 3600

        _, access, max_age = tokens.refresh(cfg, pair.refresh_token)
        assert max_age == 24 * 3600
        assert tokens.verify(access, secret=SECRET).user_id == 42
        # The refresh token itself is never reissued, so its exp bounds the session.
        assert tokens.verify(pair.refresh_token, secret=SECRET, expected_type="refresh").user_id == 42

    def test_uses_current_user_row(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET)
        pair = tokens.issue(cfg, USER)
        _, access, _ = tokens.refresh(
            cfg,
            pair.refresh_token,
            load_user=lambda uid: {"user_id": uid, "username": "alice", "role": "moderator"},
        )
        assert tokens.verify(access, secret=SECRET).role == "moderator"

    def test_vanished_user_cannot_refresh(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET)
        pair = tokens.issue(cfg, USER)
        with pytest.raises(InvalidTokenError):
            tokens.refresh(cfg, pair.refresh_token, load_user=lambda uid: None)

    @pytest.mark.parametrize("bad", [None, "", "nope"])
    def test_missing_or_invalid_refresh_token(self, make_cfg, bad):
        cfg = make_cfg(JWT_SECRET=SECRET)
        with pytest.raises(InvalidTokenError):
            tokens.refresh(cfg, bad)

    def test_access_token_cannot_refresh(self, make_cfg):
        cfg = make_cfg(JWT_SECRET=SECRET)
        pair = tokens.issue(cfg, USER)
        with pytest.raises(InvalidTokenError):
            tokens.refresh(cfg, pair.access_token)
