"""
Name: Auth API Tests

Responsibilities:
  - Login, register, refresh and logout through HTTP
  - Bearer token validation on protected routes
  - Error envelopes for authentication failures
"""

import pytest

from mainthub.auth.security import create_refresh_token

from conftest import PASSWORD


pytestmark = pytest.mark.api


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}


def test_login_returns_tokens_and_stamps_last_login(client, make_user, users):
    user = make_user("supervisor", email="sup@example.com")

    response = client.post("/auth/login", json={"email": " SUP@example.com ", "password": PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Login successful"
    assert body["data"]["token_type"] == "bearer"
    assert body["data"]["user"]["id"] == str(user.id)
    assert body["data"]["access_token"]
    assert body["data"]["refresh_token"]
    assert users.get_user_by_id(user.id).last_login is not None


@pytest.mark.parametrize("email, password", [("sup@example.com", "wrong-pass"), ("nobody@example.com", PASSWORD)])
def test_login_bad_credentials(client, make_user, email, password):
    make_user("supervisor", email="sup@example.com")

    response = client.post("/auth/login", json={"email": email, "password": password})

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Invalid email or password"}


def test_login_inactive_account(client, make_user):
    make_user("operator", email="gone@example.com", is_active=False)

    response = client.post("/auth/login", json={"email": "gone@example.com", "password": PASSWORD})

    assert response.status_code == 401
    assert response.json()["message"] == "Account is deactivated"


def test_register_creates_operator(client):
    response = client.post(
        "/auth/register",
        json={"email": "new@example.com", "name": "New Hire", "password": "welcome1"},
    )

    assert response.status_code == 201
    user = response.json()["data"]["user"]
    assert user["role"] == "operator"
    assert user["email"] == "new@example.com"

    duplicate = client.post(
        "/auth/register",
        json={"email": "NEW@example.com", "name": "Again", "password": "welcome1"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["success"] is False


def test_register_rejects_short_password(client):
    response = client.post("/auth/register", json={"email": "a@example.com", "name": "A", "password": "123"})

    assert response.status_code == 400
    assert "at least 6" in response.json()["message"]


def test_refresh_issues_new_pair(client, make_user, settings):
    user = make_user("operator")

    response = client.post("/auth/refresh", json={"refresh_token": create_refresh_token(settings, user.id)})

    assert response.status_code == 200
    assert response.json()["data"]["user"]["id"] == str(user.id)


def test_refresh_rejects_access_token(client, make_user, auth_headers):
    user = make_user("operator")
    access = auth_headers(user)["Authorization"].split(" ", 1)[1]

    response = client.post("/auth/refresh", json={"refresh_token": access})

    assert response.status_code == 401


def test_me_and_logout(client, make_user, auth_headers):
    user = make_user("operator", name="Otto")
    headers = auth_headers(user)

    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["data"]["name"] == "Otto"

    logout = client.post("/auth/logout", headers=headers)
    assert logout.status_code == 200
    assert logout.json()["message"] == "Logged out"


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer not-a-jwt"}],
)
def test_protected_route_requires_valid_token(client, headers):
    response = client.get("/tasks", headers=headers)

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_refresh_token_is_not_an_access_token(client, make_user, settings):
    user = make_user("admin")
    headers = {"Authorization": f"Bearer {create_refresh_token(settings, user.id)}"}

    assert client.get("/auth/me", headers=headers).status_code == 401


def test_deactivated_user_token_is_rejected(client, make_user, users, auth_headers):
    user = make_user("operator")
    headers = auth_headers(user)
    users.deactivate_user(user.id)

    response = client.get("/auth/me", headers=headers)

    assert response.status_code == 401
    assert response.json()["message"] == "User not active"
