"""
Submissions module (triage workflow).

Scope:
- Public intake against active forms, validated against the form's field rules
- Status / priority / assignment / due date / tags updates, notes, attachments
- Every committed mutation is audited and broadcast to the form's room
"""
