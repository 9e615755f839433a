from datetime import date

import pytest

from app.portal.modules.submissions.validation import validate_field_value, validate_submission_data
from app.portal.utils import parse_date


@pytest.mark.parametrize(
    "field,value,ok",
    [
        ({"name": "n", "label": "N", "type": "text", "validation": {"pattern": r"[A-Z]{3}-\d+"}}, "ABC-12", True),
        ({"name": "n", "label": "N", "type": "text", "validation": {"pattern": r"[A-Z]{3}-\d+"}}, "ABC-12x", False),
        ({"name": "n", "label": "N", "type": "number", "validation": {"min": 1, "max": 5}}, "3", True),
        ({"name": "n", "label": "N", "type": "number", "validation": {"min": 1, "max": 5}}, 6, False),
        ({"name": "n", "label": "N", "type": "number"}, True, False),
        ({"name": "n", "label": "N", "type": "radio", "options": ["a", "b"]}, "b", True),
        ({"name": "n", "label": "N", "type": "checkbox", "options": ["a", "b"]}, ["a", "b"], True),
        ({"name": "n", "label": "N", "type": "checkbox", "options": ["a", "b"]}, ["c"], False),
        ({"name": "n", "label": "N", "type": "checkbox"}, "yes", False),
        ({"name": "n", "label": "N", "type": "date"}, "2026-02-30", False),
        ({"name": "n", "label": "N", "type": "date"}, "2026-02-28", True),
        ({"name": "n", "label": "N", "type": "date"}, "2026-01-01garbage", False),
        ({"name": "n", "label": "N", "type": "date"}, "2026-01-01T09:30:00", True),
        ({"name": "n", "label": "N", "type": "textarea", "validation": {"max": 3}}, "four", False),
        ({"name": "n", "label": "N", "type": "file"}, "uploads/abc.pdf", True),
    ],
)
def test_field_rules(field, value, ok):
    assert (validate_field_value(field, value) == []) is ok


def test_required_checkbox_must_be_ticked():
    field = {"name": "terms", "label": "Terms", "type": "checkbox", "required": True}
    assert validate_field_value(field, False) == ["Terms is required."]
    assert validate_field_value(field, True) == []


def test_optional_blank_values_pass():
    fields = [
        {"name": "a", "label": "A", "type": "email"},
        {"name": "b", "label": "B", "type": "number"},
    ]
    assert validate_submission_data(fields, {"a": "", "extra": "kept"}) == []


def test_parse_date_reads_the_whole_value():
    assert parse_date("2026-03-04") == date(2026, 3, 4)
    assert parse_date("2026-03-04T23:59:00") == date(2026, 3, 4)
    assert parse_date("") is None
    with pytest.raises(ValueError):
        parse_date("2026-03-04 and then some")
