from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base
from app.portal.utils import isoformat, utcnow

if TYPE_CHECKING:
    from app.portal.models import User
    from app.portal.modules.submissions.models import Submission


class Form(Base):
    __tablename__ = "forms"
    __table_args__ = (
        Index("idx_forms_active_public", "is_active", "is_public"),
        Index("idx_forms_created_by", "created_by_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # [{name, label, type, required, options, placeholder, validation}]
    fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # {allow_multiple_submissions, require_authentication, notification_email, auto_response}
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submission_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    created_by: Mapped["User | None"] = relationship("User", foreign_keys=[created_by_user_id], lazy="selectin")
    submissions: Mapped[list["Submission"]] = relationship(
        "Submission",
        back_populates="form",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    def field_by_name(self, name: str) -> dict | None:
        for f in self.fields or []:
            if f.get("name") == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "fields": list(self.fields or []),
            "settings": dict(self.settings or {}),
            "is_active": self.is_active,
            "is_public": self.is_public,
            "submission_count": self.submission_count,
            "created_by": self.created_by.summary() if self.created_by else None,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
