"""Signed papers / marks proxy through HTTP. The upstream is always faked."""

import pytest
import requests

from paper_nexus.papers import proxy
from paper_nexus.papers.signing import create_signed_request, decrypt_response

KEY = "test-signing-key-0123456789abcdef"


class FakeUpstream:
    def __init__(self, status=200, body=None, exc=None):
        self.calls = []
        self.status = status
        self.body = {"papers": [{"id": 7, "title": "June 2019 P1"}]} if body is None else body
        self.exc = exc

    def __call__(self, url, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.status, self.body)


class FakeResponse:
    def __init__(self, status, body):
        self.status_code = status
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()
    monkeypatch.setattr(proxy.requests, "get", fake)
    return fake


def signed(key=KEY, **kw):
    return create_signed_request(key, **kw).to_headers()


@pytest.fixture
def login_headers(make_user, auth_headers):
    return auth_headers(make_user("alice"))


class TestRejections:
    def test_missing_signature_headers(self, client, upstream, login_headers):
        r = client.get("/papers", params={"path": "/subjects"}, headers=login_headers)
        assert r.status_code == 400
        assert r.json()["code"] == "missing_signature_headers"
        assert upstream.calls == []

    def test_bad_signature(self, client, upstream, login_headers):
        r = client.get("/papers", params={"path": "/subjects"}, headers={**login_headers, **signed("wrong-key")})
        assert r.status_code == 403
        assert r.json()["code"] == "invalid_signature"
        assert upstream.calls == []

    def test_non_ascii_signature(self, client, upstream):
        headers = {**signed(), "X-Request-Signature": b"\xe9" * 64}
        r = client.get("/marks", params={"path": "/subjects"}, headers=headers)
        assert r.status_code == 403
        assert r.json()["code"] == "invalid_signature"
        assert upstream.calls == []

    def test_stale_signature(self, client, upstream, login_headers):
        import time

        stale = signed(now_ms=int(time.time() * 1000) - 120_000)
        r = client.get("/papers", params={"path": "/subjects"}, headers={**login_headers, **stale})
        assert r.status_code == 403
        assert upstream.calls == []

    def test_missing_path(self, client, upstream, login_headers):
        r = client.get("/papers", headers={**login_headers, **signed()})
        assert r.status_code == 400
        assert r.json()["code"] == "path_required"

    def test_traversal_path(self, client, upstream, login_headers):
        r = client.get("/papers", params={"path": "/../admin"}, headers={**login_headers, **signed()})
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_path"
        assert upstream.calls == []

    def test_papers_need_login(self, client, upstream):
        r = client.get("/papers", params={"path": "/subjects"}, headers=signed())
        assert r.status_code == 401
        assert upstream.calls == []

    def test_foreign_origin(self, client, upstream, login_headers):
        headers = {**login_headers, **signed(), "Origin": "https://evil.example"}
        r = client.get("/papers", params={"path": "/subjects"}, headers=headers)
        assert r.status_code == 403
        assert r.json()["code"] == "invalid_origin"
        assert upstream.calls == []


class TestProxy:
    def test_papers_success(self, client, upstream, login_headers, cfg):
        headers = {**login_headers, **signed(), "Referer": "http://testserver/browse"}
        r = client.get("/papers", params={"path": "/subjects/3/papers"}, headers=headers)
        assert r.status_code == 200
        assert r.headers["cache-control"] == "no-store, must-revalidate"

        body = r.json()
        assert body["success"] is True
        assert decrypt_response(body["data"], KEY, salt=cfg.RESPONSE_KEY_SALT) == upstream.body

        call = upstream.calls[0]
        assert call["url"] == "http://papers.upstream.test/subjects/3/papers"
        assert call["headers"]["Authorization"] == login_headers["Authorization"]
        assert call["headers"]["X-Request-ID"] == headers["X-Request-Token"]

    def test_marks_is_public(self, client, upstream, cfg):
        r = client.get("/marks", params={"path": "/subjects"}, headers=signed())
        assert r.status_code == 200
        assert upstream.calls[0]["url"] == "http://papers.upstream.test/marks/subjects"
        assert "Authorization" not in upstream.calls[0]["headers"]
        assert decrypt_response(r.json()["data"], KEY, salt=cfg.RESPONSE_KEY_SALT) == upstream.body

    @pytest.mark.parametrize(
        "fake",
        [
            FakeUpstream(status=500),
            FakeUpstream(body=ValueError("not json")),
            FakeUpstream(exc=requests.ConnectionError("refused")),
        ],
    )
    def test_upstream_failure(self, client, monkeypatch, fake):
        monkeypatch.setattr(proxy.requests, "get", fake)
        r = client.get("/marks", params={"path": "/subjects"}, headers=signed())
        assert r.status_code == 502
        assert r.json()["code"] == "upstream_error"
