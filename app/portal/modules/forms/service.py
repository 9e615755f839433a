from __future__ import annotations

import re
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.portal.audit import record_event
from app.portal.constants import FIELD_TYPES, FORM_DESCRIPTION_MAX, FORM_TITLE_MAX, OPTION_FIELD_TYPES
from app.portal.modules.forms.models import Form
from app.portal.rbac import user_is_admin
from app.portal.utils import clean_text, like_pattern, parse_bool, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.portal.models import User


DEFAULT_SETTINGS = {
    "allow_multiple_submissions": True,
    "require_authentication": False,
    "notification_email": None,
    "auto_response": {"enabled": False, "subject": None, "message": None},
}

FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


# ---------- Access ----------
def can_view_form(user: "User | None", form: Form) -> bool:
    if user_is_admin(user):
        return True
    if form.is_public:
        return True
    return bool(user and form.created_by_user_id == user.id)


def can_manage_form(user: "User | None", form: Form) -> bool:
    if user_is_admin(user):
        return True
    return bool(user and form.created_by_user_id == user.id)


# ---------- Validation ----------
def _validate_field(idx: int, field: Any) -> list[str]:
    where = f"fields[{idx}]"
    if not isinstance(field, dict):
        return [f"{where} must be an object."]
    errors = []
    name = (field.get("name") or "").strip() if isinstance(field.get("name"), str) else ""
    if not name:
        errors.append(f"{where}: field name is required.")
    elif not FIELD_NAME_RE.match(name):
        errors.append(f"{where}: field name may contain only letters, digits, '_' and '-'.")
    label = field.get("label")
    if not isinstance(label, str) or not label.strip():
        errors.append(f"{where}: field label is required.")
    ftype = field.get("type")
    if ftype not in FIELD_TYPES:
        errors.append(f"{where}: invalid field type. Must be one of: {', '.join(FIELD_TYPES)}")
    options = field.get("options")
    if options is not None and (
        not isinstance(options, list) or not all(isinstance(o, str) and o.strip() for o in options)
    ):
        errors.append(f"{where}: options must be a list of non-empty strings.")
    elif ftype in OPTION_FIELD_TYPES and not options:
        errors.append(f"{where}: {ftype} fields need at least one option.")
    if "required" in field and parse_bool(field.get("required")) is None:
        errors.append(f"{where}: required must be a boolean.")

    validation = field.get("validation")
    if validation is not None:
        if not isinstance(validation, dict):
            errors.append(f"{where}: validation must be an object.")
        else:
            for bound in ("min", "max"):
                value = validation.get(bound)
                if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                    errors.append(f"{where}: validation.{bound} must be a number.")
            vmin, vmax = validation.get("min"), validation.get("max")
            if isinstance(vmin, (int, float)) and isinstance(vmax, (int, float)) and vmin > vmax:
                errors.append(f"{where}: validation.min cannot exceed validation.max.")
            pattern = validation.get("pattern")
            if pattern:
                try:
                    re.compile(pattern)
                except (re.error, TypeError):
                    errors.append(f"{where}: validation.pattern is not a valid regular expression.")
    return errors


def _validate_settings(settings: Any) -> list[str]:
    if not isinstance(settings, dict):
        return ["settings must be an object."]
    errors = []
    for flag in ("allow_multiple_submissions", "require_authentication"):
        if flag in settings and parse_bool(settings.get(flag)) is None:
            errors.append(f"settings.{flag} must be a boolean.")
    email = settings.get("notification_email")
    if email and not (isinstance(email, str) and "@" in email):
        errors.append("settings.notification_email must be an email address.")
    auto = settings.get("auto_response")
    if auto is not None and not isinstance(auto, dict):
        errors.append("settings.auto_response must be an object.")
    return errors


def validate_form_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate form creation/update payload. Returns list of errors."""
    errors = []
    if not partial or "title" in payload:
        title = payload.get("title")
        title = title.strip() if isinstance(title, str) else ""
        if not title or len(title) > FORM_TITLE_MAX:
            errors.append(f"Title is required and must be at most {FORM_TITLE_MAX} characters.")
    description = payload.get("description")
    if description is not None:
        if not isinstance(description, str) or len(description.strip()) > FORM_DESCRIPTION_MAX:
            errors.append(f"Description must be at most {FORM_DESCRIPTION_MAX} characters.")
    if not partial or "fields" in payload:
        fields = payload.get("fields")
        if not isinstance(fields, list) or not fields:
            errors.append("At least one field is required.")
        else:
            seen: set[str] = set()
            for idx, field in enumerate(fields):
                errors.extend(_validate_field(idx, field))
                name = field.get("name") if isinstance(field, dict) else None
                if isinstance(name, str) and name.strip():
                    if name.strip() in seen:
                        errors.append(f"fields[{idx}]: duplicate field name '{name.strip()}'.")
                    seen.add(name.strip())
    if payload.get("settings") is not None:
        errors.extend(_validate_settings(payload["settings"]))
    for flag in ("is_active", "is_public"):
        if flag in payload and parse_bool(payload.get(flag)) is None:
            errors.append(f"{flag} must be a boolean.")
    return errors


# ---------- Normalization ----------
def normalize_field(field: dict) -> dict:
    out: dict[str, Any] = {
        "name": field["name"].strip(),
        "label": field["label"].strip(),
        "type": field["type"],
        "required": bool(parse_bool(field.get("required"))),
    }
    if field.get("options"):
        out["options"] = [o.strip() for o in field["options"]]
    if clean_text(field.get("placeholder")):
        out["placeholder"] = clean_text(field.get("placeholder"))
    validation = field.get("validation") or {}
    rules = {k: validation[k] for k in ("min", "max", "pattern") if validation.get(k) not in (None, "")}
    if rules:
        out["validation"] = rules
    return out


def normalize_settings(raw: dict | None, base: dict | None = None) -> dict:
    settings = {**DEFAULT_SETTINGS, **(base or {})}
    raw = raw or {}
    for flag in ("allow_multiple_submissions", "require_authentication"):
        if flag in raw:
            settings[flag] = bool(parse_bool(raw[flag]))
    if "notification_email" in raw:
        settings["notification_email"] = clean_text(raw.get("notification_email"))
    if isinstance(raw.get("auto_response"), dict):
        auto = raw["auto_response"]
        settings["auto_response"] = {
            "enabled": bool(parse_bool(auto.get("enabled"))),
            "subject": clean_text(auto.get("subject")),
            "message": clean_text(auto.get("message")),
        }
    return settings


# ---------- Mutations ----------
def create_form(s: "Session", payload: dict, user: "User") -> Form:
    """Create a form. Assumes validate_form_payload() passed."""
    now = utcnow()
    form = Form(
        title=payload["title"].strip(),
        description=clean_text(payload.get("description")),
        fields=[normalize_field(f) for f in payload["fields"]],
        settings=normalize_settings(payload.get("settings")),
        is_active=parse_bool(payload.get("is_active")) is not False,
        is_public=bool(parse_bool(payload.get("is_public"))),
        submission_count=0,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(form)
    s.flush()

    record_event(
        s,
        actor=user,
        action="form.create",
        entity_type="Form",
        entity_id=str(form.id),
        metadata={"title": form.title, "field_count": len(form.fields)},
    )
    return form


def update_form(s: "Session", form: Form, payload: dict, user: "User") -> Form:
    """Partial update; only keys present in the payload change."""
    changes: dict[str, Any] = {}

    if "title" in payload:
        new_title = payload["title"].strip()
        if new_title != form.title:
            changes["title"] = {"old": form.title, "new": new_title}
            form.title = new_title

    if "description" in payload:
        new_description = clean_text(payload.get("description"))
        if new_description != form.description:
            changes["description"] = {"old": form.description, "new": new_description}
            form.description = new_description

    if "fields" in payload:
        new_fields = [normalize_field(f) for f in payload["fields"]]
        if new_fields != form.fields:
            changes["fields"] = {
                "old": [f["name"] for f in form.fields or []],
                "new": [f["name"] for f in new_fields],
            }
            form.fields = new_fields

    if payload.get("settings") is not None:
        new_settings = normalize_settings(payload["settings"], base=form.settings)
        if new_settings != form.settings:
            changes["settings"] = {"old": form.settings, "new": new_settings}
            form.settings = new_settings

    for flag in ("is_active", "is_public"):
        if flag in payload:
            new_value = bool(parse_bool(payload[flag]))
            if new_value != getattr(form, flag):
                changes[flag] = {"old": getattr(form, flag), "new": new_value}
                setattr(form, flag, new_value)

    form.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="form.update",
        entity_type="Form",
        entity_id=str(form.id),
        metadata={"title": form.title, "changes": changes},
    )
    return form


def delete_form(s: "Session", form: Form, user: "User") -> int:
    """Delete a form together with its submissions. Returns how many submissions went with it."""
    from app.portal.modules.submissions.models import Submission

    removed = s.query(func.count(Submission.id)).filter(Submission.form_id == form.id).scalar() or 0
    record_event(
        s,
        actor=user,
        action="form.delete",
        entity_type="Form",
        entity_id=str(form.id),
        metadata={"title": form.title, "submissions_deleted": removed},
    )
    s.delete(form)
    return removed


# ---------- Queries ----------
def query_forms(s: "Session", user: "User", filters: dict[str, Any]) -> "Query":
    q = s.query(Form)

    search = (filters.get("search") or "").strip()
    if search:
        like = like_pattern(search)
        q = q.filter(or_(Form.title.ilike(like, escape="\\"), Form.description.ilike(like, escape="\\")))

    if filters.get("is_active") is not None:
        q = q.filter(Form.is_active.is_(filters["is_active"]))

    # Non-admins only see forms they created or public forms
    if not user_is_admin(user):
        q = q.filter(or_(Form.created_by_user_id == user.id, Form.is_public.is_(True)))

    return q.order_by(Form.created_at.desc(), Form.id.desc())


def form_stats(s: "Session", form: Form, *, recent_days: int = 7) -> dict[str, Any]:
    from app.portal.modules.submissions.models import Submission

    base = s.query(Submission).filter(Submission.form_id == form.id)
    total = base.count()
    since = utcnow() - timedelta(days=recent_days)
    recent = base.filter(Submission.created_at >= since).count()
    status_rows = (
        s.query(Submission.status, func.count(Submission.id))
        .filter(Submission.form_id == form.id)
        .group_by(Submission.status)
        .all()
    )
    return {
        "total_submissions": total,
        "recent_submissions": recent,
        "status_breakdown": dict(status_rows),
        "form": {"id": form.id, "title": form.title, "submission_count": form.submission_count},
    }
