import pytest

from conftest import CONTACT_FORM, anonymous_headers, create_form, login, submit


def test_create_form_normalizes_fields_and_settings(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    assert form["title"] == "Contact us"
    assert form["is_active"] is True
    assert form["is_public"] is False
    assert form["submission_count"] == 0
    assert [f["name"] for f in form["fields"]] == ["full_name", "email", "topic", "age"]
    assert form["fields"][2]["options"] == ["sales", "support"]
    assert form["fields"][2]["required"] is False
    assert form["settings"]["allow_multiple_submissions"] is True
    assert form["settings"]["require_authentication"] is False


@pytest.mark.parametrize(
    "payload",
    [
        {"title": "", "fields": CONTACT_FORM["fields"]},
        {"title": "x" * 101, "fields": CONTACT_FORM["fields"]},
        {"title": "No fields", "fields": []},
        {"title": "Bad type", "fields": [{"name": "a", "label": "A", "type": "slider"}]},
        {"title": "Select without options", "fields": [{"name": "a", "label": "A", "type": "select"}]},
        {"title": "Duplicate", "fields": [
            {"name": "a", "label": "A", "type": "text"},
            {"name": "a", "label": "B", "type": "text"},
        ]},
    ],
)
def test_create_form_validation(client, payload):
    headers = login(client, "user@example.com")
    r = client.post("/api/forms", json=payload, headers=headers)
    assert r.status_code == 400
    assert r.json["errors"]


def test_viewer_cannot_create_forms(client):
    headers = login(client, "viewer@example.com")
    r = client.post("/api/forms", json=CONTACT_FORM, headers=headers)
    assert r.status_code == 403


def test_list_visibility_owner_public_admin(client):
    headers = login(client, "user@example.com")
    create_form(client, headers, title="Private one")
    create_form(client, headers, title="Public one", is_public=True)
    client.post("/api/auth/logout")

    headers = login(client, "other@example.com")
    titles = [f["title"] for f in client.get("/api/forms").json["data"]]
    assert titles == ["Public one"]
    client.post("/api/auth/logout")

    login(client, "admin@example.com")
    r = client.get("/api/forms?search=one")
    assert r.json["total"] == 2
    assert {f["title"] for f in r.json["data"]} == {"Private one", "Public one"}


def test_list_pagination(client):
    headers = login(client, "user@example.com")
    for i in range(3):
        create_form(client, headers, title=f"Form {i}")
    r = client.get("/api/forms?page=2&limit=2")
    assert r.status_code == 200
    body = r.json
    assert body["count"] == 1
    assert body["total"] == 3
    assert body["pages"] == 2
    assert body["current"] == 2
    # Newest first
    assert body["data"][0]["title"] == "Form 0"


def test_list_rejects_bad_page(client):
    login(client, "user@example.com")
    r = client.get("/api/forms?page=abc")
    assert r.status_code == 400


def test_detail_access(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    client.post("/api/auth/logout")

    login(client, "other@example.com")
    assert client.get(f"/api/forms/{form['id']}").status_code == 403
    assert client.get("/api/forms/9999").status_code == 404


def test_public_submit_view_requires_active(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    client.post("/api/auth/logout")

    r = client.get(f"/api/forms/{form['id']}/submit")
    assert r.status_code == 200
    assert r.json["data"]["title"] == "Contact us"

    headers = login(client, "user@example.com")
    client.put(f"/api/forms/{form['id']}", json={"is_active": False}, headers=headers)
    client.post("/api/auth/logout")
    assert client.get(f"/api/forms/{form['id']}/submit").status_code == 404


def test_update_form_owner_only(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    r = client.put(
        f"/api/forms/{form['id']}",
        json={"title": "Renamed", "settings": {"allow_multiple_submissions": False}},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["data"]["title"] == "Renamed"
    assert r.json["data"]["settings"]["allow_multiple_submissions"] is False
    # Untouched settings keep their value
    assert r.json["data"]["settings"]["require_authentication"] is False
    client.post("/api/auth/logout")

    headers = login(client, "other@example.com")
    r = client.put(f"/api/forms/{form['id']}", json={"title": "Hijack"}, headers=headers)
    assert r.status_code == 403


def test_delete_form_cascades_submissions(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers, is_public=True)
    client.post("/api/auth/logout")

    anon = anonymous_headers(client)
    assert submit(client, anon, form["id"]).status_code == 201
    assert submit(client, anon, form["id"]).status_code == 201

    headers = login(client, "admin@example.com")
    r = client.delete(f"/api/forms/{form['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json["data"]["submissions_deleted"] == 2
    assert client.get(f"/api/forms/{form['id']}").status_code == 404
    assert client.get("/api/submissions").json["total"] == 0


def test_form_stats_and_submissions(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    assert submit(client, headers, form["id"]).status_code == 201
    assert submit(client, headers, form["id"]).status_code == 201

    r = client.get(f"/api/forms/{form['id']}/stats")
    assert r.status_code == 200
    stats = r.json["data"]
    assert stats["total_submissions"] == 2
    assert stats["recent_submissions"] == 2
    assert stats["status_breakdown"] == {"pending": 2}
    assert stats["form"]["submission_count"] == 2

    # The submitter sees their own submissions under the form
    r = client.get(f"/api/forms/{form['id']}/submissions?status=pending")
    assert r.json["total"] == 2


def test_export_csv(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    submit(client, headers, form["id"], {"full_name": "Jo Doe", "email": "jo@example.com", "topic": "sales"})

    r = client.get(f"/api/forms/{form['id']}/submissions/export")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    lines = r.data.decode("utf-8").strip().splitlines()
    assert lines[0].startswith("Submission #,Submitted At,Status")
    assert "Full name" in lines[0]
    assert lines[1].startswith("SUB-00000001,")
    assert "Jo Doe" in lines[1]
    client.post("/api/auth/logout")

    login(client, "other@example.com")
    assert client.get(f"/api/forms/{form['id']}/submissions/export").status_code == 403
