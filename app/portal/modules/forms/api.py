from __future__ import annotations

from flask import Blueprint, Response, abort, g, request

from app.portal.api import error_response, json_body, ok, page_params, paginated
from app.portal.constants import PERM_FORMS_CREATE
from app.portal.db import db_session
from app.portal.modules.forms.models import Form
from app.portal.modules.forms.service import (
    can_manage_form,
    can_view_form,
    create_form,
    delete_form,
    form_stats,
    query_forms,
    update_form,
    validate_form_payload,
)
from app.portal.modules.submissions.models import Submission
from app.portal.modules.submissions.service import apply_visibility, export_form_submissions_csv
from app.portal.rbac import require_login, require_permission
from app.portal.utils import parse_bool, parse_int

bp = Blueprint("forms", __name__)


def _get_form_or_404(form_id: int) -> Form:
    form = db_session().get(Form, form_id)
    if not form:
        abort(404, description="Form not found")
    return form


def _require_view(form: Form) -> None:
    if not can_view_form(g.current_user, form):
        abort(403, description="Not authorized to access this form")


def _require_manage(form: Form, verb: str) -> None:
    if not can_manage_form(g.current_user, form):
        abort(403, description=f"Not authorized to {verb} this form")


# ---------- List ----------
@bp.get("")
@require_login
def forms_list():
    s = db_session()
    filters = {
        "search": request.args.get("search"),
        "is_active": parse_bool(request.args.get("is_active")),
    }
    q = query_forms(s, g.current_user, filters)
    return paginated(q, page_params(), lambda f: f.to_dict())


# ---------- Public (for the submission page) ----------
@bp.get("/<int:form_id>/submit")
def form_for_submission(form_id: int):
    form = _get_form_or_404(form_id)
    if not form.is_active:
        abort(404, description="Form is not active")
    return ok(form.to_dict())


# ---------- Detail ----------
@bp.get("/<int:form_id>")
@require_login
def form_detail(form_id: int):
    form = _get_form_or_404(form_id)
    _require_view(form)
    return ok(form.to_dict())


# ---------- Create ----------
@bp.post("")
@require_permission(PERM_FORMS_CREATE)
def forms_create():
    s = db_session()
    payload = json_body()
    errors = validate_form_payload(payload)
    if errors:
        return error_response("Validation errors", 400, errors)

    form = create_form(s, payload, g.current_user)
    s.commit()
    return ok(form.to_dict(), status=201)


# ---------- Update ----------
@bp.put("/<int:form_id>")
@require_login
def forms_update(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    _require_manage(form, "update")

    payload = json_body()
    errors = validate_form_payload(payload, partial=True)
    if errors:
        return error_response("Validation errors", 400, errors)

    update_form(s, form, payload, g.current_user)
    s.commit()
    return ok(form.to_dict())


# ---------- Delete ----------
@bp.delete("/<int:form_id>")
@require_login
def forms_delete(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    _require_manage(form, "delete")

    removed = delete_form(s, form, g.current_user)
    s.commit()
    return ok({"id": form_id, "submissions_deleted": removed}, message="Form deleted successfully")


# ---------- Submissions of one form ----------
@bp.get("/<int:form_id>/submissions")
@require_login
def form_submissions(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    _require_view(form)

    q = s.query(Submission).filter(Submission.form_id == form.id)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(Submission.status == status)
    assigned_to = parse_int(request.args.get("assigned_to"))
    if assigned_to is not None:
        q = q.filter(Submission.assigned_to_user_id == assigned_to)
    q = apply_visibility(q, g.current_user).order_by(Submission.created_at.desc(), Submission.id.desc())
    return paginated(q, page_params(), lambda sub: sub.to_dict())


@bp.get("/<int:form_id>/submissions/export")
@require_login
def form_submissions_export(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    _require_manage(form, "export")

    data, _count = export_form_submissions_csv(s, form, g.current_user)
    s.commit()
    return Response(
        data,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="form-{form.id}-submissions.csv"'},
    )


# ---------- Stats ----------
@bp.get("/<int:form_id>/stats")
@require_login
def form_stats_view(form_id: int):
    s = db_session()
    form = _get_form_or_404(form_id)
    _require_view(form)
    return ok(form_stats(s, form))
