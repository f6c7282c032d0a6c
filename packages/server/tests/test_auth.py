"""
Tests for authentication and request middleware.

Covers:
- JWT creation and decoding
- Bearer authentication on the API (missing, invalid, expired tokens)
- Callers without an active profile
- Capability dependencies
- Security headers and request id middleware
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import jwt as pyjwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.core.auth import create_access_token, decode_access_token
from app.core.middleware import SECURITY_HEADERS, RequestContextMiddleware, SecurityHeadersMiddleware

from conftest import auth_headers


# ---------------------------------------------------------------------------
# Unit Tests: JWT
# ---------------------------------------------------------------------------

class TestJWT:
    def test_create_and_decode(self):
        uid = uuid.uuid4()
        payload = decode_access_token(create_access_token(uid))
        assert payload["sub"] == str(uid)
        assert "jti" in payload
        assert payload["exp"] > payload["iat"]

    def test_expired_jwt_raises(self):
        token = create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-1))
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_tampered_jwt_raises(self):
        token = create_access_token(uuid.uuid4())
        tampered = token[:-5] + "XXXXX"
        with pytest.raises(pyjwt.PyJWTError):
            decode_access_token(tampered)

    def test_foreign_key_rejected(self):
        token = pyjwt.encode({"sub": str(uuid.uuid4())}, "some-other-secret-entirely-32-bytes!", algorithm="HS256")
        with pytest.raises(pyjwt.InvalidSignatureError):
            decode_access_token(token)


# ---------------------------------------------------------------------------
# Integration Tests: Middleware
# ---------------------------------------------------------------------------

class TestSecurityHeadersMiddleware:
    def test_headers_present(self):
        app = FastAPI()
        app.add_middleware(SecurityHeadersMiddleware)

        @app.get("/test")
        async def test_endpoint():
            return {"ok": True}

        client = TestClient(app)
        resp = client.get("/test")
        assert resp.status_code == 200
        for header, value in SECURITY_HEADERS.items():
            assert resp.headers.get(header) == value


class TestRequestContextMiddleware:
    def _make_app(self) -> FastAPI:
        import structlog

        app = FastAPI()
        app.add_middleware(RequestContextMiddleware)

        @app.get("/context")
        async def context():
            return structlog.contextvars.get_contextvars()

        return app

    def test_generates_request_id(self):
        resp = TestClient(self._make_app()).get("/context")
        request_id = resp.headers["X-Request-ID"]
        assert uuid.UUID(request_id)
        assert resp.json()["request_id"] == request_id
        assert resp.json()["path"] == "/context"

    def test_propagates_incoming_request_id(self):
        resp = TestClient(self._make_app()).get("/context", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"
        assert resp.json()["request_id"] == "abc-123"
        assert resp.json()["method"] == "GET"


# ---------------------------------------------------------------------------
# Integration Tests: bearer authentication on the API
# ---------------------------------------------------------------------------

class TestBearerAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client, seed):
        resp = await client.get("/api/v1/tasks/")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client, seed):
        resp = await client.get("/api/v1/tasks/", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, client, seed):
        token = create_access_token(seed.alice.id, expires_delta=timedelta(minutes=-5))
        resp = await client.get("/api/v1/tasks/", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_without_subject(self, client, seed):
        from app.core.config import get_settings

        settings = get_settings()
        token = pyjwt.encode({"foo": "bar"}, settings.secret_key, algorithm=settings.jwt_algorithm)
        resp = await client.get("/api/v1/tasks/", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, seed):
        resp = await client.get("/api/v1/tasks/", headers={"Authorization": f"Bearer {create_access_token(uuid.uuid4())}"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_tombstoned_user(self, client, seed):
        resp = await client.get("/api/v1/tasks/", headers=auth_headers(seed.ghost))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_valid_token(self, client, seed):
        resp = await client.get("/api/v1/users/me", headers=auth_headers(seed.alice))
        assert resp.status_code == 200
        assert resp.json()["id"] == str(seed.alice.id)


class TestCapabilityDependency:
    @pytest.mark.asyncio
    async def test_missing_capability_is_forbidden(self, client, seed):
        resp = await client.get("/api/v1/edit-requests/", headers=auth_headers(seed.admin))
        assert resp.status_code == 403
        body = resp.json()["error"]
        assert body["code"] == "forbidden"
        assert body["details"] == {"capability": "approve_task_edits", "role": "admin"}

    @pytest.mark.asyncio
    async def test_capability_present(self, client, seed):
        resp = await client.get("/api/v1/edit-requests/", headers=auth_headers(seed.super_admin))
        assert resp.status_code == 200
