"""Email model — imported messages and their case association."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, Boolean, DateTime, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from casemail.database import Base
from casemail.models.ids import new_id


class Email(Base):
    __tablename__ = "emails"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    firm_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)

    # Addresses
    from_address: Mapped[Optional[str]] = mapped_column(String(256), index=True)
    from_name: Mapped[Optional[str]] = mapped_column(String(256))
    to_addresses: Mapped[Optional[list]] = mapped_column(JSON)  # [{"name", "address"}]
    cc_addresses: Mapped[Optional[list]] = mapped_column(JSON)

    # Content
    subject: Mapped[Optional[str]] = mapped_column(Text)
    body_preview: Mapped[Optional[str]] = mapped_column(Text)
    body_content: Mapped[Optional[str]] = mapped_column(Text)

    # Metadata
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    has_attachments: Mapped[bool] = mapped_column(Boolean, default=False)
    is_ignored: Mapped[bool] = mapped_column(Boolean, default=False)
    ignored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Case association
    case_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("cases.id", ondelete="SET NULL"), index=True
    )
    case: Mapped[Optional["Case"]] = relationship(back_populates="emails")

    def __repr__(self):
        return f"<Email {self.id}: {self.subject[:50] if self.subject else '(no subject)'}>"
