"""Test admin auth utilities and endpoints."""

from datetime import timedelta

import pytest

from abengine.services.auth import (
    authenticate_admin,
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)


def test_password_hashing():
    plain = "test-password-123"
    hashed = hash_password(plain)
    assert hashed != plain
    assert verify_password(plain, hashed)
    assert not verify_password("wrong", hashed)


def test_verify_against_garbage_hash():
    assert verify_password("x", "not-a-bcrypt-hash") is False


def test_authenticate_admin_defaults():
    assert authenticate_admin("admin@example.com", "changeme123")
    assert authenticate_admin("ADMIN@example.com", "changeme123")
    assert not authenticate_admin("admin@example.com", "nope")
    assert not authenticate_admin("someone@example.com", "changeme123")


def test_jwt_token():
    payload = decode_token(create_access_token("admin@example.com"))
    assert payload is not None
    assert payload["sub"] == "admin@example.com"
    assert payload["role"] == "admin"


def test_expired_token():
    token = create_access_token("admin@example.com", expires_delta=timedelta(seconds=-5))
    assert decode_token(token) is None


def test_invalid_token():
    assert decode_token("invalid.token.here") is None
    assert decode_token("") is None


@pytest.mark.asyncio
async def test_login_and_me(client):
    resp = await client.post("/api/v1/auth/login", json={
        "email": "admin@example.com",
        "password": "changeme123",
    })
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json() == {"email": "admin@example.com", "role": "admin"}


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    resp = await client.post("/api/v1/auth/login", json={
        "email": "admin@example.com",
        "password": "wrong",
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_me_with_bad_token(client):
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
