from __future__ import annotations

import re
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from app.portal.audit import record_event
from app.portal.constants import PASSWORD_MIN_LENGTH, PERMISSIONS, REGIONS, ROLE_USER, ROLES
from app.portal.models import Permission, Role, User, UserRole
from app.portal.rbac import ensure_default_roles, ensure_permissions
from app.portal.utils import clean_text, like_pattern, normalize_email, parse_bool, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_user_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate user create/update payload. Returns list of errors."""
    errors = []
    if not partial or "name" in payload:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append("Name is required.")
        elif len(name.strip()) > 128:
            errors.append("Name must be at most 128 characters.")
    if not partial or "email" in payload:
        email = payload.get("email")
        if not isinstance(email, str) or not EMAIL_RE.match(normalize_email(email)):
            errors.append("A valid email is required.")
    if not partial or "password" in payload:
        password = payload.get("password")
        if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
            errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    role = payload.get("role")
    if role is not None and role not in ROLES:
        errors.append(f"Invalid role. Must be one of: {', '.join(ROLES)}")
    region = payload.get("region")
    if region is not None and region not in REGIONS:
        errors.append(f"Invalid region. Must be one of: {', '.join(REGIONS)}")
    if "is_active" in payload and parse_bool(payload.get("is_active")) is None:
        errors.append("is_active must be a boolean.")
    return errors


def validate_permission_grants(grants: Any) -> list[str]:
    if not isinstance(grants, dict):
        return ["permissions must be an object of permission key -> boolean."]
    errors = []
    for key, value in grants.items():
        if key not in PERMISSIONS:
            errors.append(f"Unknown permission: {key}")
        elif not isinstance(value, bool):
            errors.append(f"Permission {key} must be true or false.")
    return errors


def email_taken(s: "Session", email: str, *, exclude_user_id: int | None = None) -> bool:
    q = s.query(User.id).filter(User.email == normalize_email(email))
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return q.first() is not None


def set_user_role(s: "Session", user: User, role_key: str) -> None:
    roles = ensure_default_roles(s)
    user.roles = [roles[role_key]]


def set_direct_permissions(s: "Session", user: User, grants: dict[str, bool]) -> None:
    """Replace the user's direct grants with the keys mapped to true; anything absent is revoked."""
    perms = ensure_permissions(s)
    user.direct_permissions = [perms[key] for key, granted in grants.items() if granted]


def create_user(s: "Session", payload: dict, actor: User | None, *, action: str = "user.create") -> User:
    """Create a user. Assumes validate_user_payload() passed and the email is free."""
    now = utcnow()
    user = User(
        name=(payload.get("name") or "").strip(),
        email=normalize_email(payload.get("email")),
        password_hash=generate_password_hash(payload.get("password") or ""),
        region=payload.get("region") or "global",
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    set_user_role(s, user, payload.get("role") or ROLE_USER)
    grants = payload.get("permissions")
    if isinstance(grants, dict) and grants:
        set_direct_permissions(s, user, grants)
    s.flush()

    record_event(
        s,
        actor=actor or user,
        action=action,
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "role": user.role_key, "region": user.region},
    )
    return user


def update_user(s: "Session", user: User, payload: dict, actor: User) -> User:
    changes: dict[str, Any] = {}

    if "name" in payload:
        new_name = (payload.get("name") or "").strip()
        if new_name != user.name:
            changes["name"] = {"old": user.name, "new": new_name}
            user.name = new_name

    if "email" in payload:
        new_email = normalize_email(payload.get("email"))
        if new_email != user.email:
            changes["email"] = {"old": user.email, "new": new_email}
            user.email = new_email

    if "region" in payload and payload["region"] != user.region:
        changes["region"] = {"old": user.region, "new": payload["region"]}
        user.region = payload["region"]

    if "role" in payload and payload["role"] != user.role_key:
        changes["role"] = {"old": user.role_key, "new": payload["role"]}
        set_user_role(s, user, payload["role"])

    if "is_active" in payload:
        new_active = bool(parse_bool(payload.get("is_active")))
        if new_active != user.is_active:
            changes["is_active"] = {"old": user.is_active, "new": new_active}
            user.is_active = new_active

    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
        changes["password"] = "changed"

    user.updated_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"changes": changes},
    )
    return user


def toggle_active(s: "Session", user: User, actor: User) -> User:
    user.is_active = not user.is_active
    user.updated_at = utcnow()
    record_event(
        s,
        actor=actor,
        action="user.activate" if user.is_active else "user.deactivate",
        entity_type="User",
        entity_id=str(user.id),
    )
    return user


def delete_user(s: "Session", user: User, actor: User) -> None:
    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    s.delete(user)


def query_users(s: "Session", filters: dict[str, Any]) -> "Query":
    q = s.query(User)
    search = (filters.get("search") or "").strip()
    if search:
        like = like_pattern(search)
        q = q.filter(or_(User.name.ilike(like, escape="\\"), User.email.ilike(like, escape="\\")))
    if filters.get("role"):
        q = q.filter(User.roles.any(Role.key == filters["role"]))
    if filters.get("region"):
        q = q.filter(User.region == filters["region"])
    if filters.get("is_active") is not None:
        q = q.filter(User.is_active.is_(filters["is_active"]))
    return q.order_by(User.created_at.desc(), User.id.desc())


def user_stats(s: "Session") -> dict[str, Any]:
    total = s.query(func.count(User.id)).scalar() or 0
    active = s.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0
    by_region = dict(s.query(User.region, func.count(User.id)).group_by(User.region).all())
    by_role = dict(
        s.query(Role.key, func.count(UserRole.user_id))
        .join(UserRole, UserRole.role_id == Role.id)
        .group_by(Role.key)
        .all()
    )
    since = utcnow() - timedelta(days=7)
    recent_logins = (
        s.query(func.count(User.id)).filter(User.last_login_at.isnot(None), User.last_login_at >= since).scalar() or 0
    )
    return {
        "total_users": total,
        "active_users": active,
        "inactive_users": total - active,
        "by_role": by_role,
        "by_region": by_region,
        "recent_logins": recent_logins,
    }


def get_active_user(s: "Session", user_id: int | None) -> User | None:
    if user_id is None:
        return None
    user = s.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def permission_rows(s: "Session") -> list[Permission]:
    return s.query(Permission).order_by(Permission.key.asc()).all()
