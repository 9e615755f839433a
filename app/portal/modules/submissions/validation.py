"""
Checks a submission's data object against the field rules of its form.

Keys the form does not declare are kept as-is; only declared fields are checked.
"""
from __future__ import annotations

import re
from typing import Any

from app.portal.utils import parse_date

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _check_bounds(label: str, amount: float, rules: dict, unit: str = "") -> list[str]:
    errors = []
    if rules.get("min") is not None and amount < rules["min"]:
        errors.append(f"{label} must be at least {rules['min']}{unit}.")
    if rules.get("max") is not None and amount > rules["max"]:
        errors.append(f"{label} must be at most {rules['max']}{unit}.")
    return errors


def validate_field_value(field: dict, value: Any) -> list[str]:
    label = field.get("label") or field.get("name")
    ftype = field.get("type")
    rules = field.get("validation") or {}
    options = field.get("options") or []

    if _is_empty(value) or (ftype == "checkbox" and not options and value is False):
        if field.get("required"):
            return [f"{label} is required."]
        return []

    if ftype == "email":
        if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
            return [f"{label} must be a valid email address."]
        return []

    if ftype == "number":
        amount = _as_number(value)
        if amount is None:
            return [f"{label} must be a number."]
        return _check_bounds(label, amount, rules)

    if ftype in ("text", "textarea"):
        if not isinstance(value, str):
            return [f"{label} must be text."]
        errors = _check_bounds(label, len(value), rules, unit=" characters")
        pattern = rules.get("pattern")
        if pattern and not re.fullmatch(pattern, value):
            errors.append(f"{label} is not in the expected format.")
        return errors

    if ftype in ("select", "radio"):
        if value not in options:
            return [f"{label} must be one of: {', '.join(options)}"]
        return []

    if ftype == "checkbox":
        if not options:
            if not isinstance(value, bool):
                return [f"{label} must be true or false."]
            return []
        chosen = value if isinstance(value, list) else [value]
        invalid = [c for c in chosen if c not in options]
        if invalid:
            return [f"{label} has invalid choices: {', '.join(map(str, invalid))}"]
        return []

    if ftype == "date":
        try:
            parse_date(value)
        except ValueError:
            return [f"{label} must be a date (YYYY-MM-DD)."]
        return []

    # file fields carry an upload reference; nothing further to check here
    return []


def validate_submission_data(fields: list[dict], data: dict) -> list[str]:
    errors: list[str] = []
    for field in fields or []:
        errors.extend(validate_field_value(field, data.get(field.get("name"))))
    return errors
