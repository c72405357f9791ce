"""
Tests for authentication endpoints (signup and login).

These tests verify:
  - Signup creates a user and returns a usable JWT
  - Duplicate email signup is rejected (409 Conflict)
  - Login returns a JWT; wrong password and unknown email get the same 401
  - Short passwords and malformed emails are rejected (422)
  - Protected endpoints reject missing or forged tokens
"""


# ---------------------------------------------------------------------------
# Signup Tests
# ---------------------------------------------------------------------------

class TestSignup:
    """Tests for POST /auth/signup."""

    async def test_signup_success(self, client):
        """A valid signup should return 201 with user_id, email, and token."""
        response = await client.post(
            "/auth/signup",
            json={
                "email": "newuser@example.com",
                "password": "StrongPass99!",
                "first_name": "Jane",
                "last_name": "Doe",
            },
        )
        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "newuser@example.com"
        assert data["token_type"] == "bearer"
        assert data["token"]
        assert data["user_id"]

    async def test_signup_token_is_usable(self, client):
        """The signup token should authenticate immediately."""
        response = await client.post(
            "/auth/signup",
            json={
                "email": "instant@example.com",
                "password": "StrongPass99!",
                "first_name": "Jane",
                "last_name": "Doe",
            },
        )
        token = response.json()["token"]

        accounts = await client.get(
            "/accounts", headers={"Authorization": f"Bearer {token}"}
        )
        assert accounts.status_code == 200
        assert accounts.json() == []

    async def test_signup_duplicate_email(self, client):
        """Signing up with an already-registered email should return 409."""
        signup_data = {
            "email": "duplicate@example.com",
            "password": "StrongPass99!",
            "first_name": "Jane",
            "last_name": "Doe",
        }
        first = await client.post("/auth/signup", json=signup_data)
        assert first.status_code == 201

        second = await client.post("/auth/signup", json=signup_data)
        assert second.status_code == 409
        assert second.json()["error_type"] == "integrity_conflict"

    async def test_signup_short_password(self, client):
        response = await client.post(
            "/auth/signup",
            json={
                "email": "short@example.com",
                "password": "short",
                "first_name": "Jane",
                "last_name": "Doe",
            },
        )
        assert response.status_code == 422

    async def test_signup_invalid_email(self, client):
        response = await client.post(
            "/auth/signup",
            json={
                "email": "not-an-email",
                "password": "StrongPass99!",
                "first_name": "Jane",
                "last_name": "Doe",
            },
        )
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Login Tests
# ---------------------------------------------------------------------------

class TestLogin:
    """Tests for POST /auth/login."""

    async def test_login_success(self, client, auth_headers):
        response = await client.post(
            "/auth/login",
            json={"email": "testuser@example.com", "password": "SecurePass123!"},
        )
        assert response.status_code == 200
        assert response.json()["token"]

    async def test_login_wrong_password(self, client, auth_headers):
        response = await client.post(
            "/auth/login",
            json={"email": "testuser@example.com", "password": "WrongPass123!"},
        )
        assert response.status_code == 401
        assert response.json()["error_type"] == "invalid_credentials"

    async def test_login_unknown_email_same_error(self, client, auth_headers):
        """Unknown email and wrong password must be indistinguishable."""
        wrong_password = await client.post(
            "/auth/login",
            json={"email": "testuser@example.com", "password": "WrongPass123!"},
        )
        unknown_email = await client.post(
            "/auth/login",
            json={"email": "nobody@example.com", "password": "WrongPass123!"},
        )
        assert unknown_email.status_code == wrong_password.status_code == 401
        assert unknown_email.json() == wrong_password.json()


# ---------------------------------------------------------------------------
# Token enforcement
# ---------------------------------------------------------------------------

class TestTokenEnforcement:
    async def test_missing_token_rejected(self, client):
        response = await client.get("/accounts")
        assert response.status_code == 401

    async def test_forged_token_rejected(self, client):
        response = await client.get(
            "/accounts", headers={"Authorization": "Bearer not.a.real.token"}
        )
        assert response.status_code == 401

    async def test_health_is_public(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
