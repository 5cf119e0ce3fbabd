"""Global email source model — courts and authorities known firm-wide."""

from typing import Optional

from sqlalchemy import String, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column

from casemail.database import Base
from casemail.models.ids import new_id


class GlobalEmailSource(Base):
    __tablename__ = "global_email_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    firm_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)  # Court, Authority, ...
    emails: Mapped[list] = mapped_column(JSON, default=list)
    domains: Mapped[list] = mapped_column(JSON, default=list)
    classification_hint: Mapped[Optional[str]] = mapped_column(Text)

    def __repr__(self):
        return f"<GlobalEmailSource {self.id}: {self.name} ({self.category})>"
