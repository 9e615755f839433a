"""
Central constants for the client portal.
"""
from __future__ import annotations

FIELD_TYPES = ("text", "email", "number", "textarea", "select", "checkbox", "radio", "date", "file")

# Field types whose submitted value must be one of the declared options
OPTION_FIELD_TYPES = frozenset({"select", "radio"})

SUBMISSION_STATUSES = ("pending", "in-progress", "completed", "rejected", "on-hold")
SUBMISSION_PRIORITIES = ("low", "medium", "high", "urgent")

# Sortable submission columns exposed through ?sort_by=
SUBMISSION_SORT_FIELDS = ("created_at", "updated_at", "status", "priority", "due_date")

REGIONS = ("us", "china", "global")

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLE_VIEWER = "viewer"
ROLES = (ROLE_ADMIN, ROLE_USER, ROLE_VIEWER)

PERM_FORMS_CREATE = "forms.create"
PERM_USERS_MANAGE = "users.manage"
PERM_SUBMISSIONS_VIEW_ALL = "submissions.view_all"
PERM_SUBMISSIONS_EDIT = "submissions.edit"

PERMISSIONS = {
    PERM_FORMS_CREATE: "Forms: create",
    PERM_USERS_MANAGE: "Users: manage",
    PERM_SUBMISSIONS_VIEW_ALL: "Submissions: view all",
    PERM_SUBMISSIONS_EDIT: "Submissions: edit",
}

ROLE_NAMES = {
    ROLE_ADMIN: "Administrator",
    ROLE_USER: "User",
    ROLE_VIEWER: "Viewer",
}

DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: tuple(PERMISSIONS),
    ROLE_USER: (PERM_FORMS_CREATE, PERM_SUBMISSIONS_EDIT),
    ROLE_VIEWER: (),
}

# Dashboard windows for /api/submissions/stats/overview
STATS_PERIODS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_STATS_PERIOD = "30d"

FORM_TITLE_MAX = 100
FORM_DESCRIPTION_MAX = 500
PASSWORD_MIN_LENGTH = 6
