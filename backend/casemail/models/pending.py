"""Pending classification model — the human review queue."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, Boolean, DateTime, JSON, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from casemail.database import Base
from casemail.models.ids import new_id


class PendingClassification(Base):
    __tablename__ = "pending_classifications"
    __table_args__ = (
        # At most one open review item per email
        Index(
            "uq_pending_email_unresolved",
            "email_id",
            unique=True,
            postgresql_where=text("is_resolved = false"),
            sqlite_where=text("is_resolved = 0"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("emails.id", ondelete="CASCADE"), index=True
    )
    firm_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # Why it needs review
    reason: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # ReviewReason
    review_note: Mapped[Optional[str]] = mapped_column(Text)
    suggested_cases: Mapped[list] = mapped_column(JSON, default=list)  # [{caseId, confidence, matchType, reason}]
    detected_references: Mapped[list] = mapped_column(JSON, default=list)

    # Resolution
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(36))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    email: Mapped["Email"] = relationship()

    def __repr__(self):
        state = "resolved" if self.is_resolved else "pending"
        return f"<PendingClassification {self.id}: {self.reason} ({state})>"
