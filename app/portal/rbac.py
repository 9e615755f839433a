from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g
from sqlalchemy.orm import Session

from app.portal.constants import DEFAULT_ROLE_PERMISSIONS, PERMISSIONS, ROLE_ADMIN, ROLE_NAMES
from app.portal.models import Permission, Role, User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in user.permission_keys()


def user_is_admin(user: User | None) -> bool:
    if not user or not user.is_active:
        return False
    return any(r.key == ROLE_ADMIN for r in user.roles)


def current_user() -> User | None:
    return getattr(g, "current_user", None)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = current_user()
        if not user or not user.is_active:
            abort(401)
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = current_user()
            # Unauthenticated -> 401 (the SPA redirects to its login screen)
            if not user or not user.is_active:
                abort(401)
            # Authenticated but unauthorized -> 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = current_user()
        if not user or not user.is_active:
            abort(401)
        if not user_is_admin(user):
            g.missing_permission = f"role:{ROLE_ADMIN}"
            abort(403)
        return fn(*args, **kwargs)

    return wrapped


def ensure_permissions(s: Session) -> dict[str, Permission]:
    """Create any missing permission rows (idempotent)."""
    existing = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSIONS.items():
        if key not in existing:
            p = Permission(key=key, name=name)
            s.add(p)
            existing[key] = p
    return existing


def ensure_default_roles(s: Session) -> dict[str, Role]:
    """
    Create the admin/user/viewer roles and grant their default permissions.
    Never revokes permissions an operator added to a role by hand.
    """
    perms = ensure_permissions(s)
    roles = {r.key: r for r in s.query(Role).all()}
    for key, perm_keys in DEFAULT_ROLE_PERMISSIONS.items():
        role = roles.get(key)
        if role is None:
            role = Role(key=key, name=ROLE_NAMES[key])
            s.add(role)
            roles[key] = role
        for pk in perm_keys:
            if perms[pk] not in role.permissions:
                role.permissions.append(perms[pk])
    s.flush()
    return roles
