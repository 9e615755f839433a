from __future__ import annotations

from flask import Blueprint, Response, abort, current_app, g, request, stream_with_context

from app.portal.db import db_session
from app.portal.modules.forms.models import Form
from app.portal.modules.forms.service import can_view_form
from app.portal.modules.notifications.broker import format_sse, form_room, get_broker, user_room
from app.portal.modules.submissions.service import can_view_all_submissions
from app.portal.rbac import require_login

bp = Blueprint("notifications", __name__)


def _requested_rooms() -> list[str]:
    s = db_session()
    user = g.current_user
    rooms = [user_room(user.id)]
    for raw in request.args.getlist("form"):
        try:
            form_id = int(raw)
        except ValueError:
            abort(400, description=f"Invalid form id: {raw!r}")
        form = s.get(Form, form_id)
        if not form:
            abort(404, description="Form not found")
        if not can_view_form(user, form):
            abort(403, description="Not authorized to access this form")
        # Form room events carry full submission bodies.
        if not can_view_all_submissions(user):
            abort(403, description="Not authorized to watch submissions of this form")
        rooms.append(form_room(form_id))
    return rooms


@bp.get("/events")
@require_login
def events_stream():
    # Access checks happen up front; the stream itself never touches the DB.
    rooms = _requested_rooms()
    user_id = g.current_user.id
    db_session().close()
    keepalive = float(current_app.config.get("EVENT_KEEPALIVE_SECONDS") or 15)
    sub = get_broker().subscribe(rooms)
    current_app.logger.info("Event stream %s opened for user %s rooms=%s", sub.id, user_id, rooms)
    logger = current_app.logger

    def generate():
        try:
            yield format_sse("connected", {"subscription": sub.id, "rooms": rooms})
            while True:
                ev = sub.get(timeout=keepalive)
                if ev is None:
                    yield ": keepalive\n\n"
                    continue
                yield ev.to_sse()
        finally:
            sub.close()
            logger.info("Event stream %s closed", sub.id)

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
