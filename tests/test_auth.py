"""Registration, login and bearer token tests."""

import pytest
from httpx import AsyncClient

from shortlink.auth import Authenticator
from shortlink.dependencies import ServiceManager
from shortlink.models import User


@pytest.mark.asyncio
async def test_register_returns_token_and_user(client: AsyncClient) -> None:
    response = await client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "Alice@Example.com", "password": "Secret123"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["user"]["username"] == "alice"
    assert data["user"]["email"] == "alice@example.com"
    assert "password" not in data["user"]
    assert "password_hash" not in data["user"]


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, register) -> None:
    await register(client)

    response = await client.post(
        "/api/auth/register",
        json={"username": "alice2", "email": "alice@example.com", "password": "Secret123"},
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "Email already registered"}


@pytest.mark.asyncio
async def test_register_duplicate_username(client: AsyncClient, register) -> None:
    await register(client)

    response = await client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "other@example.com", "password": "Secret123"},
    )

    assert response.status_code == 409
    assert response.json() == {"detail": "Username already taken"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"username": "alice", "email": "alice@example.com", "password": "short1A"},
        {"username": "alice", "email": "alice@example.com", "password": "alllowercase1"},
        {"username": "alice", "email": "alice@example.com", "password": "NoDigitsHere"},
        {"username": "al", "email": "alice@example.com", "password": "Secret123"},
        {"username": "bad name", "email": "alice@example.com", "password": "Secret123"},
        {"username": "alice", "email": "not-an-email", "password": "Secret123"},
    ],
)
async def test_register_rejects_invalid_input(client: AsyncClient, payload: dict) -> None:
    response = await client.post("/api/auth/register", json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, register) -> None:
    await register(client)

    response = await client.post("/api/auth/login", json={"email": "ALICE@example.com", "password": "Secret123"})

    assert response.status_code == 200
    assert response.json()["user"]["username"] == "alice"
    assert response.json()["access_token"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "credentials",
    [
        {"email": "alice@example.com", "password": "Wrong1234"},
        {"email": "nobody@example.com", "password": "Secret123"},
    ],
)
async def test_login_failure_does_not_reveal_which_part(client: AsyncClient, register, credentials: dict) -> None:
    await register(client)

    response = await client.post("/api/auth/login", json=credentials)

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid email or password"}


@pytest.mark.asyncio
async def test_me_reports_link_count(client: AsyncClient, auth_headers: dict[str, str]) -> None:
    for index in range(2):
        await client.post("/api/shorten", json={"original_url": f"https://example.com/{index}"}, headers=auth_headers)

    response = await client.get("/api/auth/me", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["username"] == "alice"
    assert response.json()["link_count"] == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": "Basic YWxpY2U6c2VjcmV0"},
    ],
)
async def test_me_rejects_missing_or_invalid_token(client: AsyncClient, headers: dict[str, str]) -> None:
    response = await client.get("/api/auth/me", headers=headers)

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_is_rejected(client: AsyncClient, services: ServiceManager) -> None:
    user = await services.users.create("mallory", "mallory@example.com", "Secret123")
    forged_settings = services.settings.model_copy(update={"JWT_SECRET": "another-secret-key-that-is-also-long-enough"})
    token = Authenticator(forged_settings, services.users).issue_token(user)

    response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_round_trip(services: ServiceManager) -> None:
    user = await services.users.create("trent", "trent@example.com", "Secret123")

    token = services.authenticator.issue_token(user)
    resolved = await services.authenticator.resolve(token)

    assert resolved is not None
    assert resolved.id == user.id


@pytest.mark.asyncio
async def test_token_for_unknown_user_resolves_to_none(services: ServiceManager) -> None:
    orphan = services.authenticator.issue_token(User(id=4242, username="ghost", email="ghost@example.com"))

    assert await services.authenticator.resolve(orphan) is None
