"""Repositories — SQLAlchemy queries behind the classification and review services.

Each repository wraps an ``AsyncSession``; callers own the transaction.
Rows are converted into the plain records of ``casemail.services.types``
before they reach the classifier.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import String, and_, cast, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from casemail.exceptions import NotFoundError
from casemail.models.case import CASE_STATUS_ACTIVE, Case
from casemail.models.classification_log import ClassificationLog
from casemail.models.email import Email
from casemail.models.global_source import GlobalEmailSource
from casemail.models.pending import PendingClassification
from casemail.services.email_text import normalize_address
from casemail.services.types import (
    CaseActor,
    CaseCandidate,
    EmailMessage,
    GlobalSource,
    Sender,
)


def _strings(values) -> tuple[str, ...]:
    return tuple(str(v) for v in (values or []) if v)


def to_candidate(case: Case) -> CaseCandidate:
    return CaseCandidate(
        id=case.id,
        title=case.title,
        case_type=case.case_type or "",
        description=case.description or "",
        keywords=_strings(case.keywords),
        reference_numbers=_strings(case.reference_numbers),
        subject_patterns=_strings(case.subject_patterns),
        classification_notes=case.classification_notes,
        actors=tuple(
            CaseActor(id=a.id, email=a.email, email_domains=_strings(a.email_domains))
            for a in case.actors
        ),
        client_id=case.client_id,
        firm_id=case.firm_id,
    )


def to_global_source(source: GlobalEmailSource) -> GlobalSource:
    return GlobalSource(
        id=source.id,
        name=source.name,
        category=source.category,
        emails=_strings(source.emails),
        domains=_strings(source.domains),
        classification_hint=source.classification_hint,
    )


def to_message(email: Email) -> EmailMessage:
    return EmailMessage(
        id=email.id,
        subject=email.subject or "",
        body_preview=email.body_preview or "",
        body_content=email.body_content,
        sender=Sender(address=email.from_address or "", name=email.from_name),
        received_at=email.received_at,
        has_attachments=bool(email.has_attachments),
    )


class CaseRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, case_id: str) -> Optional[Case]:
        return await self.db.get(Case, case_id)

    async def find_active_cases_for_client(self, client_id: str, firm_id: str) -> list[CaseCandidate]:
        """Active cases of a client, with actors, in canonical (id) order."""
        result = await self.db.execute(
            select(Case)
            .options(selectinload(Case.actors))
            .where(
                and_(
                    Case.client_id == client_id,
                    Case.firm_id == firm_id,
                    Case.status == CASE_STATUS_ACTIVE,
                )
            )
            .order_by(Case.id)
        )
        return [to_candidate(case) for case in result.scalars().all()]


class GlobalSourceRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_firm(self, firm_id: str) -> list[GlobalSource]:
        result = await self.db.execute(
            select(GlobalEmailSource)
            .where(GlobalEmailSource.firm_id == firm_id)
            .order_by(GlobalEmailSource.name)
        )
        return [to_global_source(s) for s in result.scalars().all()]


class EmailRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, email_id: str, for_update: bool = False) -> Optional[Email]:
        if for_update:
            return await self.db.get(Email, email_id, with_for_update=True, populate_existing=True)
        return await self.db.get(Email, email_id)

    async def get_many(self, email_ids: Sequence[str], firm_id: str) -> list[Email]:
        if not email_ids:
            return []
        result = await self.db.execute(
            select(Email)
            .where(and_(Email.id.in_(list(email_ids)), Email.firm_id == firm_id))
            .order_by(Email.received_at.desc())
        )
        return list(result.scalars().all())

    async def find_by_participants(self, addresses: Sequence[str], firm_id: str) -> list[Email]:
        """Non-ignored emails where any address is the sender or a to/cc recipient."""
        normalized = [normalize_address(a) for a in addresses if normalize_address(a)]
        if not normalized:
            return []

        conditions = []
        for address in normalized:
            conditions.append(func.lower(Email.from_address) == address)
            conditions.append(cast(Email.to_addresses, String).ilike(f"%{address}%"))
            conditions.append(cast(Email.cc_addresses, String).ilike(f"%{address}%"))

        result = await self.db.execute(
            select(Email)
            .where(
                and_(
                    Email.firm_id == firm_id,
                    Email.is_ignored.is_(False),
                    or_(*conditions),
                )
            )
            .order_by(Email.received_at.desc())
        )
        return list(result.scalars().all())

    async def update_case_assignment(self, email_id: str, case_id: Optional[str]) -> Optional[str]:
        """Point the email at ``case_id``; returns the previous case id."""
        email = await self.get(email_id, for_update=True)
        if email is None:
            raise NotFoundError(f"Email {email_id} not found")
        previous = email.case_id
        email.case_id = case_id
        await self.db.flush()
        return previous

    async def mark_ignored(self, email_id: str) -> Optional[str]:
        """Flag the email as not case-related and detach it; returns the previous case id."""
        email = await self.get(email_id, for_update=True)
        if email is None:
            raise NotFoundError(f"Email {email_id} not found")
        previous = email.case_id
        email.case_id = None
        email.is_ignored = True
        email.ignored_at = datetime.now(timezone.utc)
        await self.db.flush()
        return previous


class PendingClassificationStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, pending_id: str, for_update: bool = False) -> Optional[PendingClassification]:
        if for_update:
            return await self.db.get(
                PendingClassification, pending_id, with_for_update=True, populate_existing=True
            )
        return await self.db.get(PendingClassification, pending_id)

    async def get_unresolved_for_email(self, email_id: str) -> Optional[PendingClassification]:
        result = await self.db.execute(
            select(PendingClassification)
            .where(
                and_(
                    PendingClassification.email_id == email_id,
                    PendingClassification.is_resolved.is_(False),
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def upsert(
        self,
        email_id: str,
        firm_id: str,
        reason: str,
        review_note: Optional[str],
        suggested_cases: list,
        detected_references: list,
    ) -> PendingClassification:
        """Create the unresolved entry for an email, or refresh the existing one.

        If another session inserts the open entry first, the unique index
        rejects ours; the transaction is rolled back and the write becomes
        an update of that entry.
        """
        fields = {
            "reason": reason,
            "review_note": review_note,
            "suggested_cases": suggested_cases,
            "detected_references": detected_references,
        }
        pending = await self.get_unresolved_for_email(email_id)
        if pending is None:
            pending = PendingClassification(email_id=email_id, firm_id=firm_id, **fields)
            self.db.add(pending)
            try:
                await self.db.flush()
                return pending
            except IntegrityError:
                await self.db.rollback()
                pending = await self.get_unresolved_for_email(email_id)
                if pending is None:
                    raise

        for name, value in fields.items():
            setattr(pending, name, value)
        pending.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        return pending

    def _unresolved_query(
        self,
        firm_id: str,
        client_id: Optional[str] = None,
        reason: Optional[str] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ):
        query = select(PendingClassification).where(
            and_(
                PendingClassification.firm_id == firm_id,
                PendingClassification.is_resolved.is_(False),
            )
        )
        if reason:
            query = query.where(PendingClassification.reason == reason)
        if created_after:
            query = query.where(PendingClassification.created_at >= created_after)
        if created_before:
            query = query.where(PendingClassification.created_at <= created_before)
        if client_id:
            # An email belongs to a client through its current case
            query = (
                query.join(Email, Email.id == PendingClassification.email_id)
                .join(Case, Case.id == Email.case_id)
                .where(Case.client_id == client_id)
            )
        return query

    async def list_unresolved(self, firm_id: str, limit: int = 50, offset: int = 0, **filters) -> list[PendingClassification]:
        query = (
            self._unresolved_query(firm_id, **filters)
            .options(selectinload(PendingClassification.email))
            .order_by(PendingClassification.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_unresolved(self, firm_id: str, **filters) -> int:
        query = select(func.count()).select_from(self._unresolved_query(firm_id, **filters).subquery())
        return (await self.db.execute(query)).scalar() or 0

    async def mark_resolved(self, pending: PendingClassification, user_id: str) -> PendingClassification:
        pending.is_resolved = True
        pending.resolved_by = user_id
        pending.resolved_at = datetime.now(timezone.utc)
        await self.db.flush()
        return pending


class ClassificationLogStore:
    """Append-only: entries are never updated or deleted."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, **fields) -> ClassificationLog:
        entry = ClassificationLog(**fields)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def for_email(self, email_id: str, firm_id: str) -> list[ClassificationLog]:
        result = await self.db.execute(
            select(ClassificationLog)
            .where(and_(ClassificationLog.email_id == email_id, ClassificationLog.firm_id == firm_id))
            .order_by(ClassificationLog.performed_at.desc())
        )
        return list(result.scalars().all())

    async def count(self, firm_id: str, since: datetime, action: str, was_automatic: Optional[bool] = None) -> int:
        query = select(func.count(ClassificationLog.id)).where(
            and_(
                ClassificationLog.firm_id == firm_id,
                ClassificationLog.performed_at >= since,
                ClassificationLog.action == action,
            )
        )
        if was_automatic is not None:
            query = query.where(ClassificationLog.was_automatic.is_(was_automatic))
        return (await self.db.execute(query)).scalar() or 0
