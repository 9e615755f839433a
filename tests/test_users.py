from conftest import PASSWORD, login


def test_users_requires_manage_permission(client):
    assert client.get("/api/users").status_code == 401
    login(client, "user@example.com")
    assert client.get("/api/users").status_code == 403


def test_list_and_filters(client):
    login(client, "admin@example.com")
    r = client.get("/api/users")
    assert r.status_code == 200
    assert r.json["total"] == 4

    r = client.get("/api/users?role=user")
    assert {u["email"] for u in r.json["data"]} == {"user@example.com", "other@example.com"}

    r = client.get("/api/users?region=china")
    assert [u["email"] for u in r.json["data"]] == ["other@example.com"]

    r = client.get("/api/users?search=vera")
    assert [u["email"] for u in r.json["data"]] == ["viewer@example.com"]


def test_create_user_with_direct_grant(client):
    headers = login(client, "admin@example.com")
    r = client.post(
        "/api/users",
        json={
            "name": "Vic Viewer",
            "email": "vic@example.com",
            "password": "secret1",
            "role": "viewer",
            "region": "us",
            "permissions": {"submissions.view_all": True},
        },
        headers=headers,
    )
    assert r.status_code == 201
    user = r.json["data"]
    assert user["role"] == "viewer"
    assert user["permissions"]["submissions.view_all"] is True
    assert user["permissions"]["forms.create"] is False
    assert user["direct_permissions"] == ["submissions.view_all"]

    r = client.post(
        "/api/users",
        json={"name": "Dup", "email": "vic@example.com", "password": "secret1"},
        headers=headers,
    )
    assert r.status_code == 409

    r = client.post(
        "/api/users",
        json={"name": "Bad", "email": "bad@example.com", "password": "secret1", "role": "owner"},
        headers=headers,
    )
    assert r.status_code == 400


def test_update_role_and_permissions(client, user_ids):
    headers = login(client, "admin@example.com")
    uid = user_ids["viewer@example.com"]

    r = client.put(f"/api/users/{uid}", json={"role": "user", "region": "china"}, headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["role"] == "user"
    assert r.json["data"]["region"] == "china"

    r = client.put(
        f"/api/users/{uid}/permissions",
        json={"permissions": {"users.manage": True, "forms.create": False}},
        headers=headers,
    )
    assert r.status_code == 200
    perms = r.json["data"]["permissions"]
    assert perms["users.manage"] is True
    # Role grants still apply even when the direct grant is false
    assert perms["forms.create"] is True

    r = client.put(f"/api/users/{uid}/permissions", json={"permissions": {"nope": True}}, headers=headers)
    assert r.status_code == 400

    client.post("/api/auth/logout")
    login(client, "viewer@example.com")
    assert client.get("/api/users").status_code == 200

    # A new grant set replaces the old one; omitted keys are revoked
    client.post("/api/auth/logout")
    headers = login(client, "admin@example.com")
    r = client.put(
        f"/api/users/{uid}/permissions",
        json={"permissions": {"submissions.view_all": True}},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["data"]["direct_permissions"] == ["submissions.view_all"]
    assert r.json["data"]["permissions"]["users.manage"] is False

    client.post("/api/auth/logout")
    login(client, "viewer@example.com")
    assert client.get("/api/users").status_code == 403


def test_cannot_deactivate_or_delete_self(client, user_ids):
    headers = login(client, "admin@example.com")
    uid = user_ids["admin@example.com"]
    assert client.put(f"/api/users/{uid}/toggle-active", headers=headers).status_code == 400
    assert client.put(f"/api/users/{uid}", json={"is_active": False}, headers=headers).status_code == 400
    assert client.delete(f"/api/users/{uid}", headers=headers).status_code == 400


def test_delete_user(client, user_ids):
    headers = login(client, "admin@example.com")
    uid = user_ids["other@example.com"]
    r = client.delete(f"/api/users/{uid}", headers=headers)
    assert r.status_code == 200
    assert client.get(f"/api/users/{uid}").status_code == 404

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "other@example.com", "password": PASSWORD})
    assert r.status_code == 401


def test_user_stats(client):
    headers = login(client, "admin@example.com")
    users = client.get("/api/users?search=viewer").json["data"]
    client.put(f"/api/users/{users[0]['id']}/toggle-active", headers=headers)

    r = client.get("/api/users/stats/overview")
    assert r.status_code == 200
    stats = r.json["data"]
    assert stats["total_users"] == 4
    assert stats["active_users"] == 3
    assert stats["inactive_users"] == 1
    assert stats["by_role"] == {"admin": 1, "user": 2, "viewer": 1}
    assert stats["by_region"] == {"global": 2, "us": 1, "china": 1}
    assert stats["recent_logins"] == 1


def test_permission_catalog(client):
    login(client, "admin@example.com")
    r = client.get("/api/users/permissions")
    assert [p["key"] for p in r.json["data"]] == [
        "forms.create",
        "submissions.edit",
        "submissions.view_all",
        "users.manage",
    ]
