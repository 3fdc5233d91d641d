import pytest


pytestmark = pytest.mark.asyncio


async def test_profile_requires_access_token(client):
    resp = await client.get("/api/v1/users/profile")
    assert resp.status_code == 401


async def test_get_profile(client, create_user, auth_header_factory, frozen_clock):
    user, password = await create_user(email="ada@mail.com")
    headers = await auth_header_factory(user.email, password)

    resp = await client.get("/api/v1/users/profile", headers=headers)
    data = resp.json()["data"]
    assert resp.status_code == 200
    assert data["id"] == user.public_id
    assert data["email"] == "ada@mail.com"
    assert data["emailVerified"] is True
    assert data["role"] == "USER"
    assert "password_hash" not in data


async def test_expired_access_token(client, create_user, auth_header_factory, frozen_clock):
    user, password = await create_user()
    headers = await auth_header_factory(user.email, password)

    frozen_clock.advance(minutes=15)
    resp = await client.get("/api/v1/users/profile", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "TOKEN_EXPIRED"


async def test_delete_profile(client, create_user, auth_header_factory, frozen_clock):
    user, password = await create_user(email="leaving@mail.com")
    login = await client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    session = login.json()["data"]
    headers = {"Authorization": f"Bearer {session['accessToken']}"}

    resp = await client.delete("/api/v1/users/profile", headers=headers)
    assert resp.status_code == 200

    # Still-valid access token no longer resolves a user
    again = await client.get("/api/v1/users/profile", headers=headers)
    assert again.status_code == 404

    refresh = await client.post(
        "/api/v1/auth/refresh",
        headers={"Authorization": f"Bearer {session['refreshToken']}"},
    )
    assert refresh.status_code == 401

    relogin = await client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    assert relogin.status_code == 401

    signup = await client.post(
        "/api/v1/auth/signup",
        json={"firstName": "New", "lastName": "Person", "email": user.email, "password": "Another!123"},
    )
    assert signup.status_code == 409
    assert "scheduled for deletion" in signup.json()["error"]["message"]


async def test_update_profile(client, create_user, auth_header_factory, frozen_clock):
    user, password = await create_user()
    headers = await auth_header_factory(user.email, password)

    resp = await client.put(
        "/api/v1/users/profile",
        json={"firstName": "Grace", "lastName": "Hopper", "phoneNumber": "+15550123"},
        headers=headers,
    )
    data = resp.json()["data"]
    assert resp.status_code == 200
    assert (data["firstName"], data["lastName"], data["phoneNumber"]) == ("Grace", "Hopper", "+15550123")

    short = await client.put("/api/v1/users/profile", json={"firstName": "G", "lastName": "Hopper"}, headers=headers)
    assert short.status_code == 400
    assert "firstName" in short.json()["error"]["details"]["fields"]


async def test_update_username(client, create_user, auth_header_factory, frozen_clock):
    user, password = await create_user()
    other, _ = await create_user()
    headers = await auth_header_factory(user.email, password)

    reserved = await client.put("/api/v1/users/username", json={"username": "admin"}, headers=headers)
    assert reserved.status_code == 400
    assert "reserved" in reserved.json()["error"]["details"]["fields"]["username"]

    taken = await client.put("/api/v1/users/username", json={"username": other.username}, headers=headers)
    assert taken.status_code == 409
    assert taken.json()["error"]["code"] == "DUPLICATE_RESOURCE"

    ok = await client.put("/api/v1/users/username", json={"username": "grace_h"}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["data"]["username"] == "grace_h"

    again = await client.put("/api/v1/users/username", json={"username": "grace_h2"}, headers=headers)
    assert again.status_code == 400
    assert "30 days" in again.json()["error"]["message"]
