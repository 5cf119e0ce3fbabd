"""Case models — active matters and the people/domains associated with them."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, DateTime, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from casemail.database import Base
from casemail.models.ids import new_id

CASE_STATUS_ACTIVE = "Active"


class Case(Base):
    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    firm_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    case_number: Mapped[Optional[str]] = mapped_column(String(64))
    case_type: Mapped[Optional[str]] = mapped_column(String(64))
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default=CASE_STATUS_ACTIVE, index=True)

    # Classification signals
    keywords: Mapped[list] = mapped_column(JSON, default=list)
    reference_numbers: Mapped[list] = mapped_column(JSON, default=list)
    subject_patterns: Mapped[list] = mapped_column(JSON, default=list)
    classification_notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    actors: Mapped[list["CaseActor"]] = relationship(
        back_populates="case", cascade="all, delete-orphan"
    )
    emails: Mapped[list["Email"]] = relationship(back_populates="case")

    def __repr__(self):
        return f"<Case {self.id}: {self.title[:50]} ({self.status})>"


class CaseActor(Base):
    __tablename__ = "case_actors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    case_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("cases.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(256))
    role: Mapped[Optional[str]] = mapped_column(String(64))  # Client, OpposingParty, CourtClerk...
    email: Mapped[Optional[str]] = mapped_column(String(256), index=True)
    email_domains: Mapped[list] = mapped_column(JSON, default=list)

    # Relationships
    case: Mapped["Case"] = relationship(back_populates="actors")

    def __repr__(self):
        return f"<CaseActor {self.id}: {self.email or self.email_domains}>"
