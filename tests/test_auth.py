import pytest

from conftest import PASSWORD, login


def test_login_returns_user_and_csrf(client):
    r = client.post("/api/auth/login", json={"email": "USER@example.com ", "password": PASSWORD})
    assert r.status_code == 200
    data = r.json["data"]
    assert data["user"]["email"] == "user@example.com"
    assert data["user"]["role"] == "user"
    assert data["user"]["permissions"]["forms.create"] is True
    assert data["user"]["permissions"]["users.manage"] is False
    assert data["csrf_token"]

    r = client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json["data"]["user"]["last_login_at"] is not None


def test_login_invalid_credentials(client):
    r = client.post("/api/auth/login", json={"email": "user@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["success"] is False


def test_login_rate_limited_after_five_attempts(client):
    for _ in range(5):
        r = client.post("/api/auth/login", json={"email": "user@example.com", "password": "wrong"})
        assert r.status_code == 401
    r = client.post("/api/auth/login", json={"email": "user@example.com", "password": PASSWORD})
    assert r.status_code == 429


def test_logout_clears_session(client):
    login(client, "user@example.com")
    assert client.get("/api/auth/me").status_code == 200
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert client.get("/api/auth/me").status_code == 401


def test_register_forces_user_role(client):
    r = client.post(
        "/api/auth/register",
        json={"name": "New Person", "email": "new@example.com", "password": "secret1", "role": "admin"},
    )
    assert r.status_code == 201
    assert r.json["data"]["user"]["role"] == "user"
    # Registration logs the new account in
    assert client.get("/api/auth/me").json["data"]["user"]["email"] == "new@example.com"


def test_register_duplicate_email(client):
    r = client.post(
        "/api/auth/register",
        json={"name": "Dup", "email": "user@example.com", "password": "secret1"},
    )
    assert r.status_code == 409


def test_register_validation(client):
    r = client.post("/api/auth/register", json={"name": "", "email": "not-an-email", "password": "123"})
    assert r.status_code == 400
    assert len(r.json["errors"]) >= 2


@pytest.mark.parametrize(
    "payload",
    [
        {"name": 5, "email": "five@example.com", "password": "secret1"},
        {"name": "Five", "email": ["five@example.com"], "password": "secret1"},
        {"name": "Five", "email": "five@example.com", "password": 1234567},
    ],
)
def test_register_rejects_non_string_fields(client, payload):
    r = client.post("/api/auth/register", json=payload)
    assert r.status_code == 400
    assert len(r.json["errors"]) == 1


def test_non_string_profile_and_password_values(client):
    r = client.post("/api/auth/login", json={"email": "user@example.com", "password": 123456})
    assert r.status_code == 401

    headers = login(client, "user@example.com")
    r = client.put("/api/auth/profile", json={"name": {"first": "Uma"}}, headers=headers)
    assert r.status_code == 400
    r = client.put(
        "/api/auth/change-password",
        json={"current_password": PASSWORD, "new_password": 12345678},
        headers=headers,
    )
    assert r.status_code == 400


def test_register_disabled(app, client):
    app.config["ALLOW_SELF_REGISTRATION"] = False
    r = client.post(
        "/api/auth/register",
        json={"name": "Nope", "email": "nope@example.com", "password": "secret1"},
    )
    assert r.status_code == 403


def test_update_profile(client):
    headers = login(client, "user@example.com")
    r = client.put("/api/auth/profile", json={"name": "Uma Renamed"}, headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Uma Renamed"

    r = client.put("/api/auth/profile", json={"email": "admin@example.com"}, headers=headers)
    assert r.status_code == 409


def test_change_password(client):
    headers = login(client, "user@example.com")
    r = client.put(
        "/api/auth/change-password",
        json={"current_password": "wrong", "new_password": "another-pw"},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.put(
        "/api/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "another-pw"},
        headers=headers,
    )
    assert r.status_code == 200

    client.post("/api/auth/logout")
    login(client, "user@example.com", "another-pw")


def test_deactivated_user_cannot_login(client):
    headers = login(client, "admin@example.com")
    users = client.get("/api/users?search=viewer", headers=headers).json["data"]
    r = client.put(f"/api/users/{users[0]['id']}/toggle-active", headers=headers)
    assert r.json["data"]["is_active"] is False

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "viewer@example.com", "password": PASSWORD})
    assert r.status_code == 401
