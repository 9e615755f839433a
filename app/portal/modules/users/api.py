from __future__ import annotations

from flask import Blueprint, abort, g, request

from app.portal.api import error_response, json_body, ok, page_params, paginated
from app.portal.audit import record_event
from app.portal.constants import PERM_USERS_MANAGE
from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.users.service import (
    create_user,
    delete_user,
    email_taken,
    permission_rows,
    query_users,
    set_direct_permissions,
    toggle_active,
    update_user,
    user_stats,
    validate_permission_grants,
    validate_user_payload,
)
from app.portal.rbac import require_permission
from app.portal.utils import parse_bool

bp = Blueprint("users", __name__)

UPDATABLE_FIELDS = ("name", "email", "role", "region", "is_active", "password")


def _get_user_or_404(user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user:
        abort(404, description="User not found")
    return user


@bp.get("")
@require_permission(PERM_USERS_MANAGE)
def users_list():
    s = db_session()
    filters = {
        "search": request.args.get("search"),
        "role": (request.args.get("role") or "").strip() or None,
        "region": (request.args.get("region") or "").strip() or None,
        "is_active": parse_bool(request.args.get("is_active")),
    }
    return paginated(query_users(s, filters), page_params(), lambda u: u.to_dict())


@bp.get("/stats/overview")
@require_permission(PERM_USERS_MANAGE)
def users_stats():
    return ok(user_stats(db_session()))


@bp.get("/permissions")
@require_permission(PERM_USERS_MANAGE)
def permissions_list():
    return ok([{"key": p.key, "name": p.name} for p in permission_rows(db_session())])


@bp.get("/<int:user_id>")
@require_permission(PERM_USERS_MANAGE)
def users_detail(user_id: int):
    return ok(_get_user_or_404(user_id).to_dict())


@bp.post("")
@require_permission(PERM_USERS_MANAGE)
def users_create():
    s = db_session()
    payload = json_body()
    errors = validate_user_payload(payload)
    if payload.get("permissions") is not None:
        errors.extend(validate_permission_grants(payload["permissions"]))
    if errors:
        return error_response("Validation errors", 400, errors)
    if email_taken(s, payload["email"]):
        return error_response("User already exists with this email.", 409)

    user = create_user(s, payload, actor=g.current_user)
    s.commit()
    return ok(user.to_dict(), status=201)


@bp.put("/<int:user_id>")
@require_permission(PERM_USERS_MANAGE)
def users_update(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    raw = json_body()
    payload = {k: raw[k] for k in UPDATABLE_FIELDS if k in raw}
    if not payload.get("password"):
        payload.pop("password", None)
    errors = validate_user_payload(payload, partial=True)
    if errors:
        return error_response("Validation errors", 400, errors)
    if "email" in payload and email_taken(s, payload["email"], exclude_user_id=user.id):
        return error_response("Email is already in use.", 409)
    if user.id == g.current_user.id and parse_bool(payload.get("is_active")) is False:
        return error_response("You cannot deactivate your own account.", 400)

    update_user(s, user, payload, actor=g.current_user)
    s.commit()
    return ok(user.to_dict())


@bp.delete("/<int:user_id>")
@require_permission(PERM_USERS_MANAGE)
def users_delete(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    if user.id == g.current_user.id:
        return error_response("You cannot delete your own account.", 400)

    delete_user(s, user, actor=g.current_user)
    s.commit()
    return ok({"id": user_id}, message="User deleted successfully")


@bp.put("/<int:user_id>/permissions")
@require_permission(PERM_USERS_MANAGE)
def users_update_permissions(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    grants = json_body().get("permissions")
    errors = validate_permission_grants(grants)
    if errors:
        return error_response("Validation errors", 400, errors)

    set_direct_permissions(s, user, grants)
    record_event(
        s,
        actor=g.current_user,
        action="user.permissions_update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"grants": grants},
    )
    s.commit()
    return ok(user.to_dict())


@bp.put("/<int:user_id>/toggle-active")
@require_permission(PERM_USERS_MANAGE)
def users_toggle_active(user_id: int):
    s = db_session()
    user = _get_user_or_404(user_id)
    if user.id == g.current_user.id:
        return error_response("You cannot deactivate your own account.", 400)

    toggle_active(s, user, actor=g.current_user)
    s.commit()
    return ok(user.to_dict())
