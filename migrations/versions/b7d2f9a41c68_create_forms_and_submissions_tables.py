"""Create forms, submissions, notes and attachments tables.

Revision ID: b7d2f9a41c68
Revises: a1c4e7f20b31
Create Date: 2026-09-30
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "b7d2f9a41c68"
down_revision: Union[str, Sequence[str], None] = "a1c4e7f20b31"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing = set(insp.get_table_names())

    if "forms" not in existing:
        op.create_table(
            "forms",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(100), nullable=False),
            sa.Column("description", sa.String(500), nullable=True),
            sa.Column("fields", sa.JSON(), nullable=False),
            sa.Column("settings", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("submission_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_by_user_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_forms_active_public", "forms", ["is_active", "is_public"])
        op.create_index("idx_forms_created_by", "forms", ["created_by_user_id"])

    if "submissions" not in existing:
        op.create_table(
            "submissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("form_id", sa.Integer(), nullable=False),
            sa.Column("submitted_by_user_id", sa.Integer(), nullable=True),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
            sa.Column("assigned_to_user_id", sa.Integer(), nullable=True),
            sa.Column("last_updated_by_user_id", sa.Integer(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("ip_address", sa.String(64), nullable=True),
            sa.Column("user_agent", sa.String(512), nullable=True),
            sa.Column("region", sa.String(64), nullable=True),
            sa.Column("referrer", sa.String(1024), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["form_id"], ["forms.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["submitted_by_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_to_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["last_updated_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_submissions_form_status", "submissions", ["form_id", "status"])
        op.create_index("idx_submissions_assigned_status", "submissions", ["assigned_to_user_id", "status"])
        op.create_index("idx_submissions_created_at", "submissions", ["created_at"])
        op.create_index("idx_submissions_status_priority", "submissions", ["status", "priority"])
        op.create_index("idx_submissions_submitted_by", "submissions", ["submitted_by_user_id"])

    if "submission_notes" not in existing:
        op.create_table(
            "submission_notes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("submission_id", sa.Integer(), nullable=False),
            sa.Column("text", sa.Text(), nullable=False),
            sa.Column("added_by_user_id", sa.Integer(), nullable=True),
            sa.Column("added_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["added_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_submission_notes_submission_id", "submission_notes", ["submission_id", "added_at"])

    if "submission_attachments" not in existing:
        op.create_table(
            "submission_attachments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("submission_id", sa.Integer(), nullable=False),
            sa.Column("storage_key", sa.String(512), nullable=False),
            sa.Column("original_filename", sa.String(255), nullable=False),
            sa.Column("content_type", sa.String(128), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("sha256", sa.String(64), nullable=False),
            sa.Column("uploaded_by_user_id", sa.Integer(), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["uploaded_by_user_id"], ["users.id"], ondelete="SET NULL"),
        )
        op.create_index("idx_submission_attachments_submission_id", "submission_attachments", ["submission_id"])


def downgrade() -> None:
    op.drop_index("idx_submission_attachments_submission_id", table_name="submission_attachments")
    op.drop_table("submission_attachments")
    op.drop_index("idx_submission_notes_submission_id", table_name="submission_notes")
    op.drop_table("submission_notes")
    op.drop_index("idx_submissions_submitted_by", table_name="submissions")
    op.drop_index("idx_submissions_status_priority", table_name="submissions")
    op.drop_index("idx_submissions_created_at", table_name="submissions")
    op.drop_index("idx_submissions_assigned_status", table_name="submissions")
    op.drop_index("idx_submissions_form_status", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("idx_forms_created_by", table_name="forms")
    op.drop_index("idx_forms_active_public", table_name="forms")
    op.drop_table("forms")
