"""Classification log model — append-only audit trail of case assignments."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, Boolean, Float, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from casemail.database import Base
from casemail.models.ids import new_id


class ClassificationLog(Base):
    __tablename__ = "email_classification_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("emails.id", ondelete="CASCADE"), index=True
    )
    firm_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # ClassificationAction
    from_case_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    to_case_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    match_type: Mapped[Optional[str]] = mapped_column(String(32))  # LogMatchType
    was_automatic: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    correction_reason: Mapped[Optional[str]] = mapped_column(Text)

    performed_by: Mapped[Optional[str]] = mapped_column(String(36))
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    def __repr__(self):
        return f"<ClassificationLog {self.id}: {self.action} {self.from_case_id} -> {self.to_case_id}>"
