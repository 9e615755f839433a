import pytest
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import Base, User
from app.portal.rbac import ensure_default_roles

PASSWORD = "pw-123456"

SEED_USERS = (
    ("admin@example.com", "Ada Admin", "admin", "global"),
    ("user@example.com", "Uma User", "user", "us"),
    ("other@example.com", "Otto Other", "user", "china"),
    ("viewer@example.com", "Vera Viewer", "viewer", "global"),
)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("EVENT_KEEPALIVE_SECONDS", "1")
    monkeypatch.setenv("MAX_ATTACHMENT_BYTES", "1024")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.delenv("ALLOW_SELF_REGISTRATION", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = ensure_default_roles(s)
        for email, name, role, region in SEED_USERS:
            u = User(
                name=name,
                email=email,
                password_hash=generate_password_hash(PASSWORD),
                region=region,
                is_active=True,
            )
            u.roles.append(roles[role])
            s.add(u)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def user_ids(app):
    with session_scope(app) as s:
        return {u.email: u.id for u in s.query(User).all()}


def login(client, email: str, password: str = PASSWORD) -> dict:
    """Log in and return headers carrying the session's CSRF token."""
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return {"X-CSRF-Token": r.json["data"]["csrf_token"]}


def anonymous_headers(client) -> dict:
    r = client.get("/api/auth/csrf")
    return {"X-CSRF-Token": r.json["data"]["csrf_token"]}


CONTACT_FORM = {
    "title": "Contact us",
    "description": "General enquiries",
    "fields": [
        {"name": "full_name", "label": "Full name", "type": "text", "required": True,
         "validation": {"min": 2, "max": 50}},
        {"name": "email", "label": "Email", "type": "email", "required": True},
        {"name": "topic", "label": "Topic", "type": "select", "options": ["sales", "support"]},
        {"name": "age", "label": "Age", "type": "number", "validation": {"min": 18}},
    ],
}


def create_form(client, headers: dict, **overrides) -> dict:
    payload = {**CONTACT_FORM, **overrides}
    r = client.post("/api/forms", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["data"]


def submit(client, headers: dict, form_id: int, data: dict | None = None, **extra):
    body = {"form_id": form_id, "data": data or {"full_name": "Jo Doe", "email": "jo@example.com"}, **extra}
    return client.post("/api/submissions", json=body, headers=headers)
