from datetime import timedelta

import pytest
from httpx import AsyncClient

from invest_backend.core.security import create_access_token


@pytest.mark.api
@pytest.mark.auth
class TestAuthAPI:
    """Test suite for authentication endpoints."""

    async def test_register_success(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={
            "name": "New User",
            "username": "newuser",
            "phone_number": "9000000010",
            "password": "secret123",
            "confirm_password": "secret123",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "User registered successfully"
        assert data["user"]["username"] == "newuser"
        assert data["user"]["balance"] == 0.0
        assert "hashed_password" not in data["user"]
        assert "password" not in data["user"]

    async def test_register_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/auth/register", json={"username": "newuser"})

        assert response.status_code == 400
        assert response.json() == {"error": "All fields are required"}

    async def test_register_duplicate_phone(self, client: AsyncClient, test_user):
        response = await client.post("/api/auth/register", json={
            "name": "Dup",
            "username": "another",
            "phone_number": "9000000001",
            "password": "secret123",
            "confirm_password": "secret123",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "Phone number already registered"

    async def test_login_success(self, client: AsyncClient, test_user):
        response = await client.post("/api/auth/login", json={
            "phone_number": "9000000001",
            "password": "secret123",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Login successful"
        assert data["token"]
        assert data["user"]["id"] == test_user.id

        profile = await client.get(
            "/api/user/profile",
            headers={"Authorization": f"Bearer {data['token']}"}
        )
        assert profile.status_code == 200
        assert profile.json()["phone_number"] == "9000000001"

    async def test_login_wrong_password(self, client: AsyncClient, test_user):
        response = await client.post("/api/auth/login", json={
            "phone_number": "9000000001",
            "password": "nope-nope",
        })

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid phone number or password"}

    async def test_malformed_body_is_client_error(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/login",
            content="not json",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert "error" in response.json()


@pytest.mark.api
@pytest.mark.auth
class TestTokenHandling:
    """Bearer token checks on protected routes."""

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/user/profile")

        assert response.status_code == 401
        assert response.json() == {"error": "Access token required"}

    async def test_invalid_token(self, client: AsyncClient):
        response = await client.get(
            "/api/user/profile",
            headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Invalid or expired token"}

    async def test_expired_token(self, client: AsyncClient, test_user):
        token = create_access_token(
            data={"sub": test_user.id, "phone_number": test_user.phone_number, "is_admin": False},
            expires_delta=timedelta(minutes=-5)
        )

        response = await client.get("/api/user/profile", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403
        assert response.json() == {"error": "Invalid or expired token"}

    async def test_token_for_deleted_user(self, client: AsyncClient):
        token = create_access_token(data={"sub": 4242, "phone_number": "9000000000", "is_admin": False})

        response = await client.get("/api/user/profile", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json() == {"error": "User not found"}

    async def test_admin_route_rejects_regular_user(self, client: AsyncClient, auth_headers):
        response = await client.get("/api/admin/users", headers=auth_headers)

        assert response.status_code == 403
        assert response.json() == {"error": "Admin access required"}

    async def test_admin_flag_read_from_database(self, client: AsyncClient, test_user):
        """A token claiming admin does not grant admin rights."""
        token = create_access_token(
            data={"sub": test_user.id, "phone_number": test_user.phone_number, "is_admin": True}
        )

        response = await client.get("/api/admin/users", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    async def test_profile_shows_balances(self, client: AsyncClient, auth_headers, test_user, set_balances):
        await set_balances(test_user, balance=12.5, recharge_balance=300.0)

        response = await client.get("/api/user/profile", headers=auth_headers)

        data = response.json()
        assert data["balance"] == 12.5
        assert data["recharge_balance"] == 300.0
        assert data["referral_code"] == test_user.referral_code
