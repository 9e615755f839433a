from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, abort, current_app, g, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal.api import error_response, json_body, ok
from app.portal.audit import record_event
from app.portal.constants import PASSWORD_MIN_LENGTH, ROLE_USER
from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.users.service import create_user, email_taken, update_user, validate_user_payload
from app.portal.rbac import require_login
from app.portal.security import ensure_csrf_token
from app.portal.utils import normalize_email, utcnow

bp = Blueprint("auth", __name__)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _attempts() -> dict[str, list[datetime]]:
    # Per-app so each app instance (and each test) starts with a clean slate.
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    attempts = _attempts()
    cutoff = utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _attempts()[ip].append(utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _login_session(user: User) -> None:
    session["user_id"] = user.id
    session.permanent = True


def _auth_payload(user: User) -> dict:
    return {"user": user.to_dict(), "csrf_token": ensure_csrf_token()}


@bp.post("/login")
def login():
    payload = json_body()
    email = normalize_email(payload.get("email"))
    password = payload.get("password")
    if not isinstance(password, str):
        password = ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        current_app.logger.warning("Login rate limit hit (ip=%s)", ip)
        return error_response("Too many login attempts. Please wait 5 minutes.", 429)

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        return error_response("Invalid credentials.", 401)

    _login_session(user)
    _attempts()[ip].clear()
    user.last_login_at = utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return ok(_auth_payload(user))


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return ok(message="Logged out.")


@bp.post("/register")
def register():
    if not current_app.config.get("ALLOW_SELF_REGISTRATION"):
        abort(403)

    payload = json_body()
    # Self-registration always lands on the plain user role.
    payload = {
        "name": payload.get("name"),
        "email": payload.get("email"),
        "password": payload.get("password"),
        "region": payload.get("region") or "global",
        "role": ROLE_USER,
    }
    errors = validate_user_payload(payload)
    if errors:
        return error_response("Validation errors", 400, errors)

    s = db_session()
    if email_taken(s, payload["email"]):
        return error_response("User already exists with this email.", 409)

    user = create_user(s, payload, actor=None, action="auth.register")
    user.last_login_at = utcnow()
    s.commit()
    _login_session(user)
    return ok(_auth_payload(user), status=201)


@bp.get("/me")
@require_login
def me():
    return ok(_auth_payload(g.current_user))


@bp.get("/csrf")
def csrf():
    return ok({"csrf_token": ensure_csrf_token()})


@bp.put("/profile")
@require_login
def update_profile():
    payload = json_body()
    payload = {k: payload[k] for k in ("name", "email") if k in payload}
    errors = validate_user_payload(payload, partial=True)
    if errors:
        return error_response("Validation errors", 400, errors)

    s = db_session()
    user: User = g.current_user
    if "email" in payload and email_taken(s, payload["email"], exclude_user_id=user.id):
        return error_response("Email is already in use.", 409)

    update_user(s, user, payload, actor=user)
    s.commit()
    return ok(user.to_dict())


@bp.put("/change-password")
@require_login
def change_password():
    payload = json_body()
    current_password = payload.get("current_password")
    new_password = payload.get("new_password")
    if not isinstance(current_password, str):
        current_password = ""
    if not isinstance(new_password, str) or len(new_password) < PASSWORD_MIN_LENGTH:
        return error_response(
            "Validation errors", 400, [f"New password must be at least {PASSWORD_MIN_LENGTH} characters."]
        )

    s = db_session()
    user: User = g.current_user
    if not check_password_hash(user.password_hash, current_password):
        record_event(
            s,
            actor=user,
            action="auth.password_change_failed",
            entity_type="User",
            entity_id=str(user.id),
            reason="Current password incorrect",
        )
        s.commit()
        return error_response("Current password is incorrect.", 400)

    user.password_hash = generate_password_hash(new_password)
    user.updated_at = utcnow()
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=str(user.id))
    s.commit()
    return ok(message="Password updated successfully.")
