"""
Tests for registration, login, and bearer-token checks on protected routes.
"""
from datetime import timedelta

import jwt
import pytest
from fastapi import status

import config
import offers
from security import create_access_token, decode_access_token, hash_password, verify_password
from tests.helpers import register

PROTECTED_ROUTES = [
    ("get", "/me"),
    ("post", "/refresh"),
    ("post", "/offers"),
    ("get", "/offers/user"),
    ("get", "/offers/apartment/64b000000000000000000000"),
    ("get", "/offers/64b000000000000000000000"),
    ("put", "/offers/64b000000000000000000000"),
    ("post", "/apartments"),
    ("delete", "/apartments/64b000000000000000000000"),
]


class TestPasswords:
    def test_hash_roundtrip(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_over_72_bytes_never_matches(self):
        hashed = hash_password("correct horse")
        assert not verify_password("x" * 100, hashed)
        assert not verify_password("\u00e9" * 40, hashed)


class TestRegisterAndLogin:
    def test_register_returns_token_and_user(self, client):
        response = client.post(
            "/register",
            json={"username": "alice", "email": "alice@example.com", "password": "password1", "role": "owner"},
        )
        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["user"]["username"] == "alice"
        assert data["user"]["role"] == "owner"
        assert "password_hash" not in data["user"]
        claims = decode_access_token(data["token"])
        assert claims.user_id == data["user"]["id"]
        assert claims.role == "owner"

    def test_register_defaults_to_tenant(self, client):
        response = client.post(
            "/register", json={"username": "bob", "email": "bob@example.com", "password": "password1"}
        )
        assert response.json()["user"]["role"] == "tenant"

    def test_admin_cannot_self_register(self, client):
        response = client.post(
            "/register",
            json={"username": "mallory", "email": "m@example.com", "password": "password1", "role": "admin"},
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_duplicate_username_and_email(self, client):
        register(client, "alice")
        response = client.post(
            "/register", json={"username": "alice", "email": "new@example.com", "password": "password1"}
        )
        assert response.status_code == status.HTTP_409_CONFLICT
        response = client.post(
            "/register", json={"username": "alice2", "email": "alice@example.com", "password": "password1"}
        )
        assert response.status_code == status.HTTP_409_CONFLICT

    def test_login_success(self, client):
        user = register(client, "alice", role="owner")
        response = client.post("/login", json={"username": "alice", "password": "s3cret-pass"})
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["userId"] == user["id"]
        assert data["username"] == "alice"
        assert data["role"] == "owner"
        assert data["email"] == "alice@example.com"
        assert data["token"]

    def test_login_with_email(self, client):
        register(client, "alice")
        response = client.post("/login", json={"username": "alice@example.com", "password": "s3cret-pass"})
        assert response.status_code == status.HTTP_200_OK

    def test_wrong_password_issues_no_token(self, client):
        register(client, "alice")
        response = client.post("/login", json={"username": "alice", "password": "wrong"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        data = response.json()
        assert data["error"] == "InvalidCredentials"
        assert "token" not in data

    def test_unknown_user_looks_like_wrong_password(self, client):
        register(client, "alice")
        wrong_password = client.post("/login", json={"username": "alice", "password": "wrong"})
        unknown_user = client.post("/login", json={"username": "nobody", "password": "wrong"})
        assert unknown_user.status_code == wrong_password.status_code
        assert unknown_user.json() == wrong_password.json()

    def test_long_password_is_a_plain_login_failure(self, client):
        register(client, "alice")
        for username in ("alice", "nobody"):
            response = client.post("/login", json={"username": username, "password": "x" * 100})
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
            assert response.json()["error"] == "InvalidCredentials"

    def test_register_limits_password_bytes(self, client):
        # 40 characters but 80 bytes in UTF-8
        response = client.post(
            "/register", json={"username": "eve", "email": "eve@example.com", "password": "\u00e9" * 40}
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert register(client, "eve", password="\u00e9" * 36)["id"]

    def test_missing_fields(self, client):
        response = client.post("/login", json={"username": "alice"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestSession:
    def test_me_is_idempotent(self, client):
        user = register(client, "alice")
        first = client.get("/me", headers=user["headers"])
        second = client.get("/me", headers=user["headers"])
        assert first.status_code == status.HTTP_200_OK
        assert first.json() == second.json()
        assert first.json() == {"id": user["id"], "username": "alice", "email": "alice@example.com", "role": "tenant"}

    def test_refresh_issues_new_token(self, client):
        user = register(client, "alice")
        response = client.post("/refresh", headers=user["headers"])
        assert response.status_code == status.HTTP_200_OK
        assert decode_access_token(response.json()["token"]).user_id == user["id"]

    def test_token_for_deleted_user(self, client, mongo_db):
        user = register(client, "alice")
        mongo_db["user"].delete_many({})
        response = client.get("/me", headers=user["headers"])
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_non_bearer_scheme(self, client):
        response = client.get("/me", headers={"Authorization": "Basic YWxpY2U6cHc="})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.parametrize("method,path", PROTECTED_ROUTES)
    def test_missing_token(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.parametrize("method,path", PROTECTED_ROUTES)
    def test_expired_token(self, client, method, path):
        user = register(client, "alice")
        token = create_access_token(user["id"], "tenant", expires_delta=timedelta(seconds=-30))
        response = getattr(client, method)(path, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.parametrize("method,path", PROTECTED_ROUTES)
    def test_tampered_token(self, client, method, path):
        user = register(client, "alice")
        forged = jwt.encode({"sub": user["id"], "role": "admin", "iat": 0, "exp": 4102444800}, "not-the-secret")
        response = getattr(client, method)(path, headers={"Authorization": f"Bearer {forged}"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_auth_failures_share_one_body(self, client):
        user = register(client, "alice")
        expired = create_access_token(user["id"], "tenant", expires_delta=timedelta(seconds=-30))
        bodies = [
            client.get("/me").json(),
            client.get("/me", headers={"Authorization": f"Bearer {expired}"}).json(),
            client.get("/me", headers={"Authorization": "Bearer garbage"}).json(),
        ]
        assert bodies[0] == bodies[1] == bodies[2]

    def test_handler_not_reached_with_bad_token(self, client, monkeypatch, future_date):
        def fail(*args, **kwargs):
            pytest.fail("handler ran without a verified identity")

        monkeypatch.setattr(offers, "submit_offer", fail)
        response = client.post(
            "/offers",
            json={"apartmentId": "x", "offerType": "fixed", "moveInDate": future_date.isoformat()},
            headers={"Authorization": "Bearer garbage"},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_token_expiry_setting(self, client, monkeypatch):
        user = register(client, "alice")
        monkeypatch.setattr(config, "JWT_EXPIRY_MINUTES", 5)
        claims = decode_access_token(create_access_token(user["id"], "tenant"))
        assert claims.expires_at - claims.issued_at == timedelta(minutes=5)
