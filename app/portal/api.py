"""
JSON envelope shared by every API blueprint.

    {"success": true, "data": ...}
    {"success": true, "count": n, "total": t, "pages": p, "current": page, "data": [...]}
    {"success": false, "message": "...", "errors": [...]}
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from flask import current_app, jsonify, request
from sqlalchemy.orm import Query


class ApiError(Exception):
    """Raised anywhere in a request to short-circuit with a JSON error response."""

    def __init__(self, message: str, status: int = 400, errors: list[Any] | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.errors = errors or []


def ok(data: Any = None, status: int = 200, message: str | None = None):
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def error_response(message: str, status: int = 400, errors: list[Any] | None = None):
    body: dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def json_body() -> dict[str, Any]:
    """Return the request's JSON object body, or raise a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ApiError("Request body must be a JSON object.", 400)
    return payload


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params() -> PageParams:
    default_limit = int(current_app.config.get("DEFAULT_PAGE_SIZE") or 10)
    max_limit = int(current_app.config.get("MAX_PAGE_SIZE") or 100)
    try:
        page = int(request.args.get("page") or 1)
        limit = int(request.args.get("limit") or default_limit)
    except ValueError:
        raise ApiError("page and limit must be integers.", 400)
    return PageParams(page=max(page, 1), limit=min(max(limit, 1), max_limit))


def paginated(q: Query, params: PageParams, serialize) -> tuple[Any, int]:
    """Run a count + page query and wrap the rows in the list envelope."""
    total = q.order_by(None).count()
    rows = q.offset(params.offset).limit(params.limit).all()
    items = [serialize(r) for r in rows]
    return jsonify(
        {
            "success": True,
            "count": len(items),
            "total": total,
            "pages": math.ceil(total / params.limit) if total else 0,
            "current": params.page,
            "data": items,
        }
    ), 200
