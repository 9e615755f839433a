from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base, User
from app.portal.modules.forms.models import Form
from app.portal.utils import isoformat, utcnow


def format_submission_number(submission_id: int | None) -> str | None:
    if submission_id is None:
        return None
    return f"SUB-{submission_id:08d}"


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("idx_submissions_form_status", "form_id", "status"),
        Index("idx_submissions_assigned_status", "assigned_to_user_id", "status"),
        Index("idx_submissions_created_at", "created_at"),
        Index("idx_submissions_status_priority", "status", "priority"),
        Index("idx_submissions_submitted_by", "submitted_by_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)
    submitted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # pending -> in-progress -> completed / rejected / on-hold (no enforced ordering)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")

    assigned_to_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # lowercased data values and tags, rebuilt whenever either changes
    search_text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Request metadata captured at intake
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    referrer: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    form: Mapped[Form] = relationship("Form", back_populates="submissions", lazy="selectin")
    submitted_by: Mapped[User | None] = relationship("User", foreign_keys=[submitted_by_user_id], lazy="selectin")
    assigned_to: Mapped[User | None] = relationship("User", foreign_keys=[assigned_to_user_id], lazy="selectin")
    last_updated_by: Mapped[User | None] = relationship("User", foreign_keys=[last_updated_by_user_id], lazy="selectin")

    notes: Mapped[list["SubmissionNote"]] = relationship(
        "SubmissionNote",
        back_populates="submission",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SubmissionNote.id",
        lazy="selectin",
    )
    attachments: Mapped[list["SubmissionAttachment"]] = relationship(
        "SubmissionAttachment",
        back_populates="submission",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SubmissionAttachment.id",
        lazy="selectin",
    )

    @property
    def submission_number(self) -> str | None:
        return format_submission_number(self.id)

    def to_dict(self, *, include_form_fields: bool = False) -> dict[str, Any]:
        form_info: dict[str, Any] = {"id": self.form_id, "title": self.form.title if self.form else None}
        if include_form_fields and self.form:
            form_info["fields"] = list(self.form.fields or [])
        return {
            "id": self.id,
            "submission_number": self.submission_number,
            "form": form_info,
            "form_id": self.form_id,
            "data": dict(self.data or {}),
            "status": self.status,
            "priority": self.priority,
            "submitted_by": self.submitted_by.summary() if self.submitted_by else None,
            "assigned_to": self.assigned_to.summary() if self.assigned_to else None,
            "last_updated_by": self.last_updated_by.summary() if self.last_updated_by else None,
            "due_date": isoformat(self.due_date),
            "tags": list(self.tags or []),
            "notes": [n.to_dict() for n in self.notes],
            "attachments": [a.to_dict() for a in self.attachments],
            "metadata": {
                "ip_address": self.ip_address,
                "user_agent": self.user_agent,
                "region": self.region,
                "referrer": self.referrer,
            },
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class SubmissionNote(Base):
    __tablename__ = "submission_notes"
    __table_args__ = (
        Index("idx_submission_notes_submission_id", "submission_id", "added_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)

    text: Mapped[str] = mapped_column(Text, nullable=False)
    added_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    submission: Mapped[Submission] = relationship("Submission", back_populates="notes", lazy="selectin")
    added_by: Mapped[User | None] = relationship("User", foreign_keys=[added_by_user_id], lazy="selectin")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "added_by": self.added_by.summary() if self.added_by else None,
            "added_at": isoformat(self.added_at),
        }


class SubmissionAttachment(Base):
    __tablename__ = "submission_attachments"
    __table_args__ = (
        Index("idx_submission_attachments_submission_id", "submission_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    submission: Mapped[Submission] = relationship("Submission", back_populates="attachments", lazy="selectin")
    uploaded_by: Mapped[User | None] = relationship("User", foreign_keys=[uploaded_by_user_id], lazy="selectin")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.storage_key,
            "original_name": self.original_filename,
            "mimetype": self.content_type,
            "size": self.size_bytes,
            "sha256": self.sha256,
            "url": f"/api/submissions/{self.submission_id}/attachments/{self.id}",
            "uploaded_by": self.uploaded_by.summary() if self.uploaded_by else None,
            "uploaded_at": isoformat(self.uploaded_at),
        }
