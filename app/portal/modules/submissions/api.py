from __future__ import annotations

from flask import Blueprint, abort, current_app, g, request, send_file

from app.portal.api import error_response, json_body, ok, page_params, paginated
from app.portal.constants import PERM_SUBMISSIONS_EDIT
from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.forms.models import Form
from app.portal.modules.notifications.broker import broadcast, form_room, user_room
from app.portal.modules.submissions.models import Submission, SubmissionAttachment
from app.portal.modules.submissions.service import (
    add_attachment,
    add_note,
    can_attach_to_submission,
    can_view_submission,
    can_work_submission,
    create_submission,
    delete_submission,
    has_prior_submission,
    note_text_or_none,
    parse_submission_filters,
    query_submissions,
    stats_overview,
    update_submission,
    validate_intake_payload,
    validate_update_payload,
)
from app.portal.modules.submissions.validation import validate_submission_data
from app.portal.modules.users.service import get_active_user
from app.portal.rbac import require_admin, require_login, require_permission
from app.portal.storage import StorageError, get_storage
from app.portal.utils import parse_int

bp = Blueprint("submissions", __name__)

UPDATABLE_FIELDS = ("status", "priority", "assigned_to", "due_date", "tags")


def _get_submission_or_404(submission_id: int) -> Submission:
    submission = db_session().get(Submission, submission_id)
    if not submission:
        abort(404, description="Submission not found")
    return submission


def _actor_name(user: User) -> str:
    return user.name or user.email


def _request_meta() -> dict[str, str | None]:
    return {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
        "region": request.headers.get("CF-IPCountry") or "unknown",
        "referrer": request.headers.get("Referer"),
    }


# ---------- List ----------
@bp.get("")
@require_login
def submissions_list():
    s = db_session()
    filters = parse_submission_filters(request.args)
    q = query_submissions(s, g.current_user, filters)
    return paginated(q, page_params(), lambda sub: sub.to_dict())


@bp.get("/stats/overview")
@require_login
def submissions_stats():
    s = db_session()
    return ok(stats_overview(s, g.current_user, request.args.get("period")))


# ---------- Detail ----------
@bp.get("/<int:submission_id>")
@require_login
def submission_detail(submission_id: int):
    submission = _get_submission_or_404(submission_id)
    if not can_view_submission(g.current_user, submission):
        abort(403, description="Not authorized to access this submission")
    return ok(submission.to_dict(include_form_fields=True))


# ---------- Intake (public) ----------
@bp.post("")
def submissions_create():
    s = db_session()
    payload = json_body()
    errors = validate_intake_payload(payload)
    if errors:
        return error_response("Validation errors", 400, errors)

    form = s.get(Form, parse_int(payload["form_id"]))
    if not form or not form.is_active:
        return error_response("Form not found or inactive", 404)

    user: User | None = getattr(g, "current_user", None)
    settings = form.settings or {}
    if settings.get("require_authentication") and not user:
        return error_response("This form requires you to be logged in.", 401)
    if user and settings.get("allow_multiple_submissions") is False and has_prior_submission(s, form, user):
        return error_response("You have already submitted this form.", 409)

    data_errors = validate_submission_data(form.fields, payload["data"])
    if data_errors:
        return error_response("Validation errors", 400, data_errors)

    submission = create_submission(s, form, payload, user, _request_meta())
    s.commit()

    body = submission.to_dict()
    broadcast(form_room(form.id), "new-submission", {"submission": body, "form_title": form.title})
    current_app.logger.info("Submission %s created for form %s", submission.id, form.id)
    return ok(body, status=201)


# ---------- Update (triage) ----------
@bp.put("/<int:submission_id>")
@require_permission(PERM_SUBMISSIONS_EDIT)
def submissions_update(submission_id: int):
    s = db_session()
    user: User = g.current_user
    submission = _get_submission_or_404(submission_id)
    if not can_work_submission(user, submission):
        abort(403, description="Not authorized to update this submission")

    raw = json_body()
    payload = {k: raw[k] for k in UPDATABLE_FIELDS if k in raw}
    errors = validate_update_payload(payload)
    if errors:
        return error_response("Validation errors", 400, errors)

    assignee = None
    if payload.get("assigned_to") is not None:
        assignee = get_active_user(s, parse_int(payload["assigned_to"]))
        if assignee is None:
            return error_response("Validation errors", 400, ["assigned_to must reference an active user."])

    changes = update_submission(s, submission, payload, user, assignee=assignee)
    s.commit()

    body = submission.to_dict()
    broadcast(
        form_room(submission.form_id),
        "submission-updated",
        {"submission": body, "updated_by": _actor_name(user), "changes": changes},
    )
    if "assigned_to" in changes and assignee is not None:
        broadcast(
            user_room(assignee.id),
            "submission-assigned",
            {"submission": body, "assigned_by": _actor_name(user)},
        )
    return ok(body)


# ---------- Notes ----------
@bp.post("/<int:submission_id>/notes")
@require_login
def submissions_add_note(submission_id: int):
    s = db_session()
    user: User = g.current_user
    submission = _get_submission_or_404(submission_id)
    if not can_work_submission(user, submission):
        abort(403, description="Not authorized to add notes to this submission")

    text = note_text_or_none(json_body().get("text"))
    if not text:
        return error_response("Validation errors", 400, ["Note text is required."])

    note = add_note(s, submission, text, user)
    s.commit()

    broadcast(
        form_room(submission.form_id),
        "submission-note-added",
        {"submission_id": submission.id, "note": note.to_dict(), "added_by": _actor_name(user)},
    )
    return ok(submission.to_dict(), status=201)


# ---------- Delete ----------
@bp.delete("/<int:submission_id>")
@require_admin
def submissions_delete(submission_id: int):
    s = db_session()
    submission = _get_submission_or_404(submission_id)
    form_id = submission.form_id

    delete_submission(s, submission, g.current_user)
    s.commit()

    broadcast(form_room(form_id), "submission-deleted", {"submission_id": submission_id})
    return ok({"id": submission_id}, message="Submission deleted successfully")


# ---------- Attachments ----------
@bp.post("/<int:submission_id>/attachments")
@require_login
def submissions_upload_attachment(submission_id: int):
    s = db_session()
    user: User = g.current_user
    submission = _get_submission_or_404(submission_id)
    if not can_attach_to_submission(user, submission):
        abort(403, description="Not authorized to attach files to this submission")

    f = request.files.get("file")
    if not f or not f.filename:
        return error_response("No file uploaded.", 400)
    file_bytes = f.read()
    limit = int(current_app.config.get("MAX_ATTACHMENT_BYTES") or 0)
    if limit and len(file_bytes) > limit:
        return error_response(f"File too large. Maximum size is {limit // (1024 * 1024)}MB.", 413)
    if not file_bytes:
        return error_response("Uploaded file is empty.", 400)

    attachment = add_attachment(s, get_storage(), submission, file_bytes, f.filename, f.mimetype, user)
    s.commit()

    broadcast(
        form_room(submission.form_id),
        "submission-updated",
        {"submission": submission.to_dict(), "updated_by": _actor_name(user)},
    )
    return ok(attachment.to_dict(), status=201)


@bp.get("/<int:submission_id>/attachments/<int:attachment_id>")
@require_login
def submissions_download_attachment(submission_id: int, attachment_id: int):
    s = db_session()
    submission = _get_submission_or_404(submission_id)
    if not can_view_submission(g.current_user, submission):
        abort(403, description="Not authorized to access this submission")
    attachment = s.get(SubmissionAttachment, attachment_id)
    if not attachment or attachment.submission_id != submission.id:
        abort(404, description="Attachment not found")

    try:
        fobj = get_storage().open(attachment.storage_key)
    except StorageError:
        current_app.logger.error("Attachment %s missing from storage (key=%s)", attachment.id, attachment.storage_key)
        abort(404, description="Attachment file missing from storage")
    return send_file(
        fobj,
        mimetype=attachment.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=attachment.original_filename,
    )
