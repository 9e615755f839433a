import json

from app.portal.modules.notifications.broker import RoomBroker, format_sse, form_room, get_broker, user_room
from conftest import anonymous_headers, create_form, login, submit


def _events(chunk) -> dict:
    text = chunk.decode("utf-8") if isinstance(chunk, bytes) else chunk
    fields = dict(line.split(": ", 1) for line in text.strip().splitlines() if not line.startswith(":"))
    return {"event": fields.get("event"), "data": json.loads(fields["data"]) if "data" in fields else None}


def test_format_sse():
    out = format_sse("new-submission", {"a": 1}, event_id=7)
    assert out == 'id: 7\nevent: new-submission\ndata: {"a":1}\n\n'


def test_publish_only_reaches_room_members():
    broker = RoomBroker(queue_size=10)
    a = broker.subscribe([form_room(1)])
    b = broker.subscribe([form_room(2), user_room(5)])

    assert broker.publish(form_room(1), "new-submission", {"x": 1}) == 1
    assert broker.publish(user_room(5), "submission-assigned", {"x": 2}) == 1
    assert broker.publish(form_room(3), "nobody", {}) == 0

    ev = a.get(timeout=0)
    assert ev.name == "new-submission"
    assert ev.payload == {"x": 1}
    assert a.get(timeout=0) is None
    assert b.get(timeout=0).name == "submission-assigned"


def test_full_queue_drops_oldest():
    broker = RoomBroker(queue_size=2)
    sub = broker.subscribe([form_room(1)])
    for i in range(3):
        broker.publish(form_room(1), "tick", {"i": i})
    assert sub.dropped == 1
    assert [sub.get(timeout=0).payload["i"] for _ in range(2)] == [1, 2]


def test_unsubscribe_empties_rooms():
    broker = RoomBroker()
    with broker.subscribe([form_room(1), user_room(1)]) as sub:
        assert broker.room_size(form_room(1)) == 1
    assert broker.room_size(form_room(1)) == 0
    assert broker.room_size(user_room(1)) == 0
    assert broker.publish(form_room(1), "late", {}) == 0
    assert sub.pending() == 0


def test_events_requires_login(client):
    assert client.get("/api/events").status_code == 401


def test_events_rejects_forms_the_user_cannot_see(client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers)
    client.post("/api/auth/logout")

    login(client, "other@example.com")
    assert client.get(f"/api/events?form={form['id']}").status_code == 403
    assert client.get("/api/events?form=9999").status_code == 404
    assert client.get("/api/events?form=abc").status_code == 400


def test_form_room_needs_access_to_every_submission(app, client):
    headers = login(client, "user@example.com")
    form = create_form(client, headers, is_public=True)
    # Owner of the form, but only sees their own or assigned submissions.
    assert client.get(f"/api/events?form={form['id']}").status_code == 403
    client.post("/api/auth/logout")

    login(client, "other@example.com")
    assert client.get(f"/api/events?form={form['id']}").status_code == 403
    assert get_broker(app).room_size(form_room(form["id"])) == 0

    # The user's own room is still available.
    resp = client.get("/api/events")
    assert resp.status_code == 200
    resp.close()


def test_view_all_grant_opens_form_room(app, client, user_ids):
    headers = login(client, "admin@example.com")
    form = create_form(client, headers, is_public=True)
    r = client.put(
        f"/api/users/{user_ids['other@example.com']}/permissions",
        json={"permissions": {"submissions.view_all": True}},
        headers=headers,
    )
    assert r.status_code == 200
    client.post("/api/auth/logout")

    login(client, "other@example.com")
    resp = client.get(f"/api/events?form={form['id']}")
    assert resp.status_code == 200
    assert get_broker(app).room_size(form_room(form["id"])) == 1
    resp.close()


def test_stream_delivers_new_submission(app, client, user_ids):
    headers = login(client, "admin@example.com")
    form = create_form(client, headers, is_public=True)
    broker = get_broker(app)

    resp = client.get(f"/api/events?form={form['id']}")
    assert resp.status_code == 200
    assert resp.mimetype == "text/event-stream"
    stream = iter(resp.response)

    first = _events(next(stream))
    assert first["event"] == "connected"
    assert set(first["data"]["rooms"]) == {form_room(form["id"]), user_room(user_ids["admin@example.com"])}
    assert broker.room_size(form_room(form["id"])) == 1

    other = app.test_client()
    r = submit(other, anonymous_headers(other), form["id"])
    assert r.status_code == 201

    ev = _events(next(stream))
    assert ev["event"] == "new-submission"
    assert ev["data"]["room"] == form_room(form["id"])
    assert ev["data"]["form_title"] == "Contact us"
    assert ev["data"]["submission"]["submission_number"] == "SUB-00000001"

    resp.close()
    assert broker.room_size(form_room(form["id"])) == 0


def test_assignment_reaches_assignee_room(app, client, user_ids):
    headers = login(client, "user@example.com")
    form = create_form(client, headers, is_public=True)
    submit(client, headers, form["id"])
    broker = get_broker(app)
    sub = broker.subscribe([user_room(user_ids["user@example.com"]), form_room(form["id"])])
    client.post("/api/auth/logout")

    headers = login(client, "admin@example.com")
    r = client.put(
        "/api/submissions/1",
        json={"assigned_to": user_ids["user@example.com"]},
        headers=headers,
    )
    assert r.status_code == 200

    names = []
    while sub.pending():
        names.append(sub.get(timeout=0).name)
    assert names == ["submission-updated", "submission-assigned"]
    sub.close()
