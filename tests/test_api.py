import base64
import json

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

from identity_service.config import Settings
from identity_service.dependencies.auth import require
from identity_service.main import create_app
from identity_service.UAA.models import User
from identity_service.UAA.schemas import TokenClaims, UserUpdate

ALICE = {"username": "alice", "email": "a@x", "password": "hunter2", "first_name": "A", "last_name": "L"}


async def _register_and_login(client, body=ALICE) -> str:
    await client.post("/register", json=body)
    resp = await client.post("/login", json={"username": body["username"], "password": body["password"]})
    assert resp.status_code == 200
    return resp.json()["token"]


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterAndLogin:
    async def test_register_login_profile(self, client):
        resp = await client.post("/register", json=ALICE)
        assert resp.status_code == 201
        assert resp.json() == {"user_id": 1, "username": "alice", "message": "User registered successfully"}

        resp = await client.post("/login", json={"username": "alice", "password": "hunter2"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["token"]
        assert body["token_type"] == "bearer"
        assert body["user_id"] == 1

        resp = await client.get("/profile", headers=_bearer(body["token"]))
        assert resp.status_code == 200
        profile = resp.json()
        assert profile["username"] == "alice"
        assert profile["email"] == "a@x"
        assert profile["last_login"] is not None
        assert "password" not in profile and "hashed_password" not in profile

    async def test_login_by_email(self, client):
        await client.post("/register", json=ALICE)

        resp = await client.post("/login", json={"username": "a@x", "password": "hunter2"})

        assert resp.status_code == 200

    @pytest.mark.parametrize("handle, password", [("alice", "nope"), ("ghost", "hunter2")])
    async def test_bad_credentials(self, client, handle, password):
        await client.post("/register", json=ALICE)

        resp = await client.post("/login", json={"username": handle, "password": password})

        assert resp.status_code == 401
        assert resp.json() == {"detail": "Invalid credentials"}

    async def test_duplicate_register(self, client):
        await client.post("/register", json=ALICE)

        resp = await client.post("/register", json=ALICE)

        assert resp.status_code == 400
        assert "already registered" in resp.json()["detail"]

    async def test_invalid_username(self, client):
        resp = await client.post("/register", json={**ALICE, "username": "<>"})

        assert resp.status_code == 400

    async def test_missing_fields_are_rejected(self, client):
        resp = await client.post("/register", json={"username": "alice"})

        assert resp.status_code == 422


class TestProtectedRoutes:
    async def test_missing_header(self, client):
        resp = await client.get("/profile")

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Authorization header is required"
        assert resp.headers["www-authenticate"] == "Bearer"

    @pytest.mark.parametrize("value", ["Basic abc", "Bearer", "bearer abc", "Bearer a b"])
    async def test_malformed_header(self, client, value):
        resp = await client.get("/profile", headers={"Authorization": value})

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Authorization header format must be Bearer <token>"

    async def test_garbage_token(self, client):
        resp = await client.get("/profile", headers=_bearer("not.a.token"))

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid or expired token"

    async def test_unsigned_token(self, client):
        def b64(data):
            return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")

        token = f"{b64({'alg': 'none', 'typ': 'JWT'})}.{b64({'sub': '1', 'iat': 1, 'exp': 9999999999})}."

        resp = await client.get("/profile", headers=_bearer(token))

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid or expired token"

    async def test_token_from_other_deployment(self, client, engine):
        other = create_app(settings=Settings(secret_key="someone-else", bcrypt_rounds=4), engine=engine)
        async with AsyncClient(transport=ASGITransport(app=other), base_url="http://other") as other_client:
            token = await _register_and_login(other_client)

        resp = await client.get("/profile", headers=_bearer(token))

        assert resp.status_code == 401

    async def test_admin_and_superuser_gating(self, client, app):
        token = await _register_and_login(client)

        resp = await client.get("/admin", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Admin access required"
        resp = await client.get("/superuser", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Superuser access required"

        await app.state.identity_service.update_user(1, UserUpdate(is_superuser=True))
        # old token still carries the old claim
        resp = await client.get("/admin", headers=_bearer(token))
        assert resp.status_code == 403

        token = (await client.post("/login", json={"username": "alice", "password": "hunter2"})).json()["token"]
        resp = await client.get("/admin", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Welcome to the admin area", "user_id": 1, "username": "alice"}
        resp = await client.get("/superuser", headers=_bearer(token))
        assert resp.status_code == 200

    async def test_profile_for_deleted_account(self, client, sessions):
        token = await _register_and_login(client)
        async with sessions() as session:
            await session.exec(delete(User).where(User.id == 1))
            await session.commit()

        resp = await client.get("/profile", headers=_bearer(token))

        assert resp.status_code == 401
        assert resp.json()["detail"] == "User not found"


class TestUserAdministration:
    async def _superuser_token(self, client, app) -> str:
        await client.post("/register", json=ALICE)
        await app.state.identity_service.update_user(1, UserUpdate(is_superuser=True))
        resp = await client.post("/login", json={"username": "alice", "password": "hunter2"})
        return resp.json()["token"]

    async def test_patch_user(self, client, app):
        token = await self._superuser_token(client, app)
        await client.post("/register", json={"username": "bob", "email": "b@x", "password": "pw"})

        resp = await client.patch("/users/2", json={"is_active": False, "first_name": "Bob"}, headers=_bearer(token))

        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert resp.json()["first_name"] == "Bob"
        resp = await client.post("/login", json={"username": "bob", "password": "pw"})
        assert resp.status_code == 401

    async def test_patch_unknown_user(self, client, app):
        token = await self._superuser_token(client, app)

        resp = await client.patch("/users/99", json={"first_name": "x"}, headers=_bearer(token))

        assert resp.status_code == 404

    async def test_patch_requires_superuser(self, client):
        token = await _register_and_login(client)

        resp = await client.patch("/users/1", json={"is_superuser": True}, headers=_bearer(token))

        assert resp.status_code == 403


class TestOTPAndPasswords:
    async def test_otp_request_and_verify(self, client):
        await client.post("/register", json=ALICE)

        resp = await client.post("/otp/request", json={"user_id": 1})
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "issued"
        assert body["expires_in_minutes"] == 15

        resp = await client.post("/otp/verify", json={"user_id": 1, "otp": body["otp"]})
        assert resp.status_code == 200
        assert resp.json() == {"verified": True}

        resp = await client.post("/otp/verify", json={"user_id": 1, "otp": body["otp"]})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid or expired OTP"

    async def test_otp_not_echoed_outside_development(self, engine):
        app = create_app(
            settings=Settings(secret_key="k", bcrypt_rounds=4, environment="production"), engine=engine
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            await client.post("/register", json=ALICE)
            resp = await client.post("/otp/request", json={"user_id": 1})

        assert resp.status_code == 202
        assert "otp" not in resp.json()

    async def test_otp_for_unknown_user(self, client):
        resp = await client.post("/otp/request", json={"user_id": 5})

        assert resp.status_code == 404

    async def test_change_password(self, client):
        token = await _register_and_login(client)

        resp = await client.post(
            "/password/change",
            json={"current_password": "wrong", "new_password": "s3cure"},
            headers=_bearer(token),
        )
        assert resp.status_code == 400

        resp = await client.post(
            "/password/change",
            json={"current_password": "hunter2", "new_password": "s3cure"},
            headers=_bearer(token),
        )
        assert resp.status_code == 200
        resp = await client.post("/login", json={"username": "alice", "password": "s3cure"})
        assert resp.status_code == 200

    async def test_change_password_requires_token(self, client):
        resp = await client.post("/password/change", json={"current_password": "a", "new_password": "b"})

        assert resp.status_code == 401

    async def test_reset_password_with_otp(self, client):
        await client.post("/register", json=ALICE)
        otp = (await client.post("/otp/request", json={"user_id": 1})).json()["otp"]

        resp = await client.post("/password/reset", json={"user_id": 1, "otp": otp, "new_password": "fresh"})
        assert resp.status_code == 200

        resp = await client.post("/password/reset", json={"user_id": 1, "otp": otp, "new_password": "again"})
        assert resp.status_code == 400

        resp = await client.post("/login", json={"username": "alice", "password": "fresh"})
        assert resp.status_code == 200


class TestRequestId:
    async def test_generated_when_absent(self, client):
        resp = await client.post("/login", json={"username": "x", "password": "y"})

        assert len(resp.headers["x-request-id"]) == 32

    async def test_echoes_caller_id(self, client):
        resp = await client.get("/profile", headers={"X-Request-ID": "abc-123"})

        assert resp.headers["x-request-id"] == "abc-123"


class TestUsernamesAndPasswords:
    async def test_username_round_trip(self, client):
        body = {"username": "jean-luc", "email": "jl@x", "password": "engage"}

        resp = await client.post("/register", json=body)
        assert resp.status_code == 201
        assert resp.json()["username"] == "jean-luc"

        resp = await client.post("/login", json={"username": "jean-luc", "password": "engage"})
        assert resp.status_code == 200
        resp = await client.get("/profile", headers=_bearer(resp.json()["token"]))
        assert resp.json()["username"] == "jean-luc"

        resp = await client.post("/register", json={**body, "username": "jeanluc", "email": "other@x"})
        assert resp.status_code == 201

    async def test_register_reports_stored_username(self, client):
        resp = await client.post("/register", json={**ALICE, "username": "  alice  "})

        assert resp.json()["username"] == "alice"

    async def test_register_password_over_72_bytes(self, client):
        resp = await client.post("/register", json={**ALICE, "password": "a" * 73})

        assert resp.status_code == 400

    async def test_change_to_password_over_72_bytes(self, client):
        token = await _register_and_login(client)

        resp = await client.post(
            "/password/change",
            json={"current_password": "hunter2", "new_password": "a" * 73},
            headers=_bearer(token),
        )

        assert resp.status_code == 400

    async def test_reset_to_long_password_keeps_otp(self, client):
        await client.post("/register", json=ALICE)
        otp = (await client.post("/otp/request", json={"user_id": 1})).json()["otp"]

        resp = await client.post("/password/reset", json={"user_id": 1, "otp": otp, "new_password": "a" * 73})
        assert resp.status_code == 400

        resp = await client.post("/password/reset", json={"user_id": 1, "otp": otp, "new_password": "fresh"})
        assert resp.status_code == 200


class TestCustomFilter:
    @pytest.fixture
    def alice_only(self, app):
        only_alice = require(lambda c: c.username == "alice", "Only alice")

        @app.get("/alice-only")
        async def alice_only(claims: TokenClaims = Depends(only_alice)):
            return {"user_id": claims.user_id}

        return app

    async def test_predicate_passes(self, client, alice_only):
        token = await _register_and_login(client)

        resp = await client.get("/alice-only", headers=_bearer(token))

        assert resp.status_code == 200
        assert resp.json() == {"user_id": 1}

    async def test_predicate_fails_with_caller_message(self, client, alice_only):
        token = await _register_and_login(client, {"username": "bob", "email": "b@x", "password": "pw"})

        resp = await client.get("/alice-only", headers=_bearer(token))

        assert resp.status_code == 403
        assert resp.json() == {"detail": "Only alice"}

    async def test_still_requires_a_token(self, client, alice_only):
        resp = await client.get("/alice-only")

        assert resp.status_code == 401
