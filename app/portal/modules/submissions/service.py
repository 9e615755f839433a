from __future__ import annotations

import csv
import hashlib
import io
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, or_
from werkzeug.utils import secure_filename

from app.portal.audit import record_event
from app.portal.constants import (
    DEFAULT_STATS_PERIOD,
    PERM_SUBMISSIONS_VIEW_ALL,
    STATS_PERIODS,
    SUBMISSION_PRIORITIES,
    SUBMISSION_SORT_FIELDS,
    SUBMISSION_STATUSES,
)
from app.portal.modules.forms.models import Form
from app.portal.modules.submissions.models import Submission, SubmissionAttachment, SubmissionNote
from app.portal.rbac import user_has_permission, user_is_admin
from app.portal.utils import clean_text, like_pattern, parse_date, parse_int, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.portal.models import User
    from app.portal.storage import Storage


# ---------- Access ----------
def can_view_all_submissions(user: "User | None") -> bool:
    return user_is_admin(user) or user_has_permission(user, PERM_SUBMISSIONS_VIEW_ALL)


def can_view_submission(user: "User | None", submission: Submission) -> bool:
    if not user:
        return False
    if can_view_all_submissions(user):
        return True
    return user.id in (submission.assigned_to_user_id, submission.submitted_by_user_id)


def can_work_submission(user: "User | None", submission: Submission) -> bool:
    """Editing and notes: admins and the current assignee."""
    if not user:
        return False
    return user_is_admin(user) or submission.assigned_to_user_id == user.id


def can_attach_to_submission(user: "User | None", submission: Submission) -> bool:
    if can_work_submission(user, submission):
        return True
    return bool(user and submission.submitted_by_user_id == user.id)


def apply_visibility(q: "Query", user: "User") -> "Query":
    if can_view_all_submissions(user):
        return q
    return q.filter(or_(Submission.assigned_to_user_id == user.id, Submission.submitted_by_user_id == user.id))


# ---------- Validation ----------
def _validate_tags(tags: Any) -> list[str]:
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        return ["tags must be a list of strings."]
    return []


def normalize_tags(tags: list[str] | None) -> list[str]:
    seen: dict[str, None] = {}
    for t in tags or []:
        t = t.strip()
        if t:
            seen.setdefault(t, None)
    return list(seen)


def validate_intake_payload(payload: dict) -> list[str]:
    errors = []
    if parse_int(payload.get("form_id")) is None:
        errors.append("Valid form ID is required.")
    if not isinstance(payload.get("data"), dict):
        errors.append("Submission data is required.")
    if payload.get("tags") is not None:
        errors.extend(_validate_tags(payload["tags"]))
    return errors


def validate_update_payload(payload: dict) -> list[str]:
    errors = []
    if "status" in payload and payload["status"] not in SUBMISSION_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(SUBMISSION_STATUSES)}")
    if "priority" in payload and payload["priority"] not in SUBMISSION_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(SUBMISSION_PRIORITIES)}")
    if payload.get("assigned_to") is not None and parse_int(payload["assigned_to"]) is None:
        errors.append("assigned_to must be a user id or null.")
    if payload.get("due_date"):
        try:
            parse_date(payload["due_date"])
        except ValueError:
            errors.append("due_date must be a date (YYYY-MM-DD).")
    if payload.get("tags") is not None:
        errors.extend(_validate_tags(payload["tags"]))
    return errors


def _text_values(value: Any):
    if value is None:
        return
    if isinstance(value, dict):
        for v in value.values():
            yield from _text_values(v)
    elif isinstance(value, list):
        for v in value:
            yield from _text_values(v)
    else:
        yield str(value)


def build_search_text(data: dict | None, tags: list[str] | None) -> str:
    """Lowercased data values and tags, one per line. Field names are not included."""
    parts = list(_text_values(data)) + list(_text_values(tags))
    return "\n".join(parts).lower()


def _bump_submission_count(s: "Session", form: Form, delta: int) -> None:
    """UPDATE forms SET submission_count = max(submission_count + delta, 0) in one statement."""
    new_value = Form.submission_count + delta
    s.query(Form).filter(Form.id == form.id).update(
        {Form.submission_count: case((new_value < 0, 0), else_=new_value)},
        synchronize_session=False,
    )
    s.expire(form, ["submission_count"])


# ---------- Mutations ----------
def create_submission(
    s: "Session",
    form: Form,
    payload: dict,
    user: "User | None",
    request_meta: dict[str, str | None],
) -> Submission:
    """Record a submission and bump the form's counter. Assumes intake validation passed."""
    now = utcnow()
    tags = normalize_tags(payload.get("tags"))
    submission = Submission(
        form_id=form.id,
        submitted_by_user_id=user.id if user else None,
        data=dict(payload["data"]),
        status="pending",
        priority="medium",
        tags=tags,
        search_text=build_search_text(payload["data"], tags),
        ip_address=request_meta.get("ip_address"),
        user_agent=(request_meta.get("user_agent") or "")[:512] or None,
        region=request_meta.get("region") or "unknown",
        referrer=(request_meta.get("referrer") or "")[:1024] or None,
        created_at=now,
        updated_at=now,
    )
    s.add(submission)
    s.flush()
    _bump_submission_count(s, form, +1)

    record_event(
        s,
        actor=user,
        action="submission.create",
        entity_type="Submission",
        entity_id=str(submission.id),
        metadata={"form_id": form.id, "submission_number": submission.submission_number},
    )
    return submission


def has_prior_submission(s: "Session", form: Form, user: "User") -> bool:
    return (
        s.query(Submission.id)
        .filter(Submission.form_id == form.id, Submission.submitted_by_user_id == user.id)
        .first()
        is not None
    )


def update_submission(
    s: "Session",
    submission: Submission,
    payload: dict,
    user: "User",
    assignee: "User | None" = None,
) -> dict[str, Any]:
    """
    Apply triage changes. `assignee` is the resolved user for payload["assigned_to"].
    Returns the change set ({field: {"old", "new"}}).
    """
    changes: dict[str, Any] = {}

    for attr in ("status", "priority"):
        if attr in payload and payload[attr] != getattr(submission, attr):
            changes[attr] = {"old": getattr(submission, attr), "new": payload[attr]}
            setattr(submission, attr, payload[attr])

    if "assigned_to" in payload:
        new_id = assignee.id if assignee else None
        if new_id != submission.assigned_to_user_id:
            changes["assigned_to"] = {"old": submission.assigned_to_user_id, "new": new_id}
            submission.assigned_to_user_id = new_id
            submission.assigned_to = assignee

    if "due_date" in payload:
        new_due: date | None = parse_date(payload.get("due_date"))
        if new_due != submission.due_date:
            changes["due_date"] = {"old": str(submission.due_date), "new": str(new_due)}
            submission.due_date = new_due

    if "tags" in payload:
        new_tags = normalize_tags(payload.get("tags"))
        if new_tags != list(submission.tags or []):
            changes["tags"] = {"old": list(submission.tags or []), "new": new_tags}
            submission.tags = new_tags
            submission.search_text = build_search_text(submission.data, new_tags)

    submission.last_updated_by_user_id = user.id
    submission.last_updated_by = user
    submission.updated_at = utcnow()

    record_event(
        s,
        actor=user,
        action="submission.update",
        entity_type="Submission",
        entity_id=str(submission.id),
        metadata={"form_id": submission.form_id, "changes": changes},
    )
    return changes


def add_note(s: "Session", submission: Submission, text: str, user: "User") -> SubmissionNote:
    note = SubmissionNote(submission_id=submission.id, text=text.strip(), added_by_user_id=user.id, added_at=utcnow())
    note.added_by = user
    submission.notes.append(note)
    submission.last_updated_by_user_id = user.id
    submission.last_updated_by = user
    submission.updated_at = utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="submission.note_add",
        entity_type="SubmissionNote",
        entity_id=str(note.id),
        metadata={"submission_id": submission.id},
    )
    return note


def delete_submission(s: "Session", submission: Submission, user: "User") -> None:
    form = submission.form
    record_event(
        s,
        actor=user,
        action="submission.delete",
        entity_type="Submission",
        entity_id=str(submission.id),
        metadata={"form_id": submission.form_id, "submission_number": submission.submission_number},
    )
    s.delete(submission)
    s.flush()
    if form is not None:
        _bump_submission_count(s, form, -1)


# ---------- Attachments ----------
def build_attachment_storage_key(submission: Submission, filename: str, digest: str) -> str:
    """Deterministic storage key; the digest prefix keeps same-named uploads apart."""
    safe_filename = secure_filename(filename) or "attachment.bin"
    return f"submissions/{submission.form_id}/{submission.id}/{digest[:12]}_{safe_filename}"


def file_digest_and_size(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def add_attachment(
    s: "Session",
    storage: "Storage",
    submission: Submission,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> SubmissionAttachment:
    sha256, size_bytes = file_digest_and_size(file_bytes)
    storage_key = build_attachment_storage_key(submission, filename, sha256)
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    attachment = SubmissionAttachment(
        submission_id=submission.id,
        storage_key=storage_key,
        original_filename=secure_filename(filename) or "attachment.bin",
        content_type=content_type,
        size_bytes=size_bytes,
        sha256=sha256,
        uploaded_by_user_id=user.id,
        uploaded_by=user,
        uploaded_at=utcnow(),
    )
    submission.attachments.append(attachment)
    submission.updated_at = utcnow()
    s.flush()

    record_event(
        s,
        actor=user,
        action="submission.attachment_upload",
        entity_type="SubmissionAttachment",
        entity_id=str(attachment.id),
        metadata={"submission_id": submission.id, "filename": attachment.original_filename, "size": size_bytes},
    )
    return attachment


# ---------- Queries ----------
def parse_submission_filters(args) -> dict[str, Any]:
    sort_by = (args.get("sort_by") or "created_at").strip()
    sort_order = (args.get("sort_order") or "desc").strip().lower()
    return {
        "status": (args.get("status") or "").strip() or None,
        "priority": (args.get("priority") or "").strip() or None,
        "assigned_to": parse_int(args.get("assigned_to")),
        "form_id": parse_int(args.get("form_id")),
        "search": (args.get("search") or "").strip() or None,
        "sort_by": sort_by if sort_by in SUBMISSION_SORT_FIELDS else "created_at",
        "sort_order": "asc" if sort_order == "asc" else "desc",
    }


def query_submissions(s: "Session", user: "User", filters: dict[str, Any]) -> "Query":
    q = s.query(Submission)

    if filters.get("status"):
        q = q.filter(Submission.status == filters["status"])
    if filters.get("priority"):
        q = q.filter(Submission.priority == filters["priority"])
    if filters.get("assigned_to") is not None:
        q = q.filter(Submission.assigned_to_user_id == filters["assigned_to"])
    if filters.get("form_id") is not None:
        q = q.filter(Submission.form_id == filters["form_id"])

    if filters.get("search"):
        q = q.filter(Submission.search_text.like(like_pattern(filters["search"].lower()), escape="\\"))

    q = apply_visibility(q, user)

    column = getattr(Submission, filters.get("sort_by") or "created_at")
    primary = column.asc() if filters.get("sort_order") == "asc" else column.desc()
    tiebreak = Submission.id.asc() if filters.get("sort_order") == "asc" else Submission.id.desc()
    return q.order_by(primary, tiebreak)


def stats_overview(s: "Session", user: "User", period: str | None) -> dict[str, Any]:
    period = period if period in STATS_PERIODS else DEFAULT_STATS_PERIOD
    now = utcnow()
    start = now - timedelta(days=STATS_PERIODS[period])

    def scoped(q):
        return apply_visibility(q.filter(Submission.created_at >= start), user)

    total = scoped(s.query(Submission)).count()
    recent = scoped(s.query(Submission)).filter(Submission.created_at >= now - timedelta(hours=24)).count()
    status_rows = scoped(s.query(Submission.status, func.count(Submission.id))).group_by(Submission.status).all()
    priority_rows = scoped(s.query(Submission.priority, func.count(Submission.id))).group_by(Submission.priority).all()
    return {
        "total_submissions": total,
        "recent_submissions": recent,
        "status_breakdown": dict(status_rows),
        "priority_breakdown": dict(priority_rows),
        "period": period,
    }


# ---------- Export ----------
def export_form_submissions_csv(s: "Session", form: Form, user: "User") -> tuple[bytes, int]:
    rows = (
        s.query(Submission)
        .filter(Submission.form_id == form.id)
        .order_by(Submission.created_at.asc(), Submission.id.asc())
        .all()
    )
    field_names = [f["name"] for f in form.fields or []]

    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(
        ["Submission #", "Submitted At", "Status", "Priority", "Assigned To", "Due Date", "Tags"]
        + [f.get("label") or f["name"] for f in form.fields or []]
    )
    for sub in rows:
        w.writerow(
            [
                sub.submission_number,
                sub.created_at.isoformat(timespec="seconds"),
                sub.status,
                sub.priority,
                sub.assigned_to.email if sub.assigned_to else "",
                str(sub.due_date) if sub.due_date else "",
                ", ".join(sub.tags or []),
            ]
            + [_csv_cell((sub.data or {}).get(name)) for name in field_names]
        )

    record_event(
        s,
        actor=user,
        action="submission.export",
        entity_type="Form",
        entity_id=str(form.id),
        metadata={"row_count": len(rows)},
    )
    return out.getvalue().encode("utf-8"), len(rows)


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def note_text_or_none(raw: Any) -> str | None:
    return clean_text(raw) if isinstance(raw, str) else None
