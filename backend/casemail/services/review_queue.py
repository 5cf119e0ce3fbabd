"""Review queue — human confirmation of classifications the engine could not settle."""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from casemail.database import async_session
from casemail.exceptions import AlreadyResolvedError, AuthorizationError, NotFoundError
from casemail.models.case import Case
from casemail.models.classification_log import ClassificationLog
from casemail.models.email import Email
from casemail.models.pending import PendingClassification
from casemail.repositories import (
    CaseRepository,
    ClassificationLogStore,
    EmailRepository,
    PendingClassificationStore,
)
from casemail.services.types import (
    CallerIdentity,
    ClassificationAction,
    ClassificationResult,
    LogMatchType,
    ReviewReason,
)

logger = logging.getLogger(__name__)

DISMISS_REASON = "Dismissed from queue"

STATS_PERIODS = {
    "DAY": timedelta(days=1),
    "WEEK": timedelta(days=7),
    "MONTH": timedelta(days=30),
    "QUARTER": timedelta(days=90),
}


@dataclass(frozen=True)
class QueueFilter:
    client_id: Optional[str] = None
    reason: Optional[ReviewReason] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None


@dataclass
class PendingPage:
    items: list[PendingClassification]
    total: int
    has_more: bool


@dataclass
class BulkAssignResult:
    assigned_count: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ClassificationStats:
    auto_classified: int
    manually_reviewed: int
    moved_after_import: int
    pending_review: int
    ai_accuracy: Optional[float]


def suggested_cases_payload(result: ClassificationResult) -> list[dict]:
    """The best suggestion followed by the listed alternatives."""
    suggestions = []
    if result.suggested_case_id:
        suggestions.append({
            "caseId": result.suggested_case_id,
            "confidence": result.confidence,
            "matchType": result.match_type.value,
            "reason": "; ".join(result.reasons),
        })
    for alt in result.alternative_cases:
        suggestions.append({
            "caseId": alt.case_id,
            "confidence": alt.confidence,
            "matchType": None,
            "reason": alt.reason,
        })
    return suggestions


def _check_firm(entity_firm_id: str, caller: CallerIdentity, what: str) -> None:
    if entity_firm_id != caller.firm_id:
        raise AuthorizationError(f"{what} belongs to another firm")


class ReviewQueueManager:
    """Queue of pending classifications and the manual decisions taken on them.

    Every decision runs in a single transaction: the email's case, the log
    entry and the resolution of the pending item are committed together or
    not at all. Decisions on the same email are serialised by row locks on
    the pending item and the email, taken in that order.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or async_session
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, email_id: str) -> asyncio.Lock:
        lock = self._locks.get(email_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[email_id] = lock
        return lock

    # ── Enqueue ────────────────────────────────────────────────

    async def enqueue(self, result: ClassificationResult, firm_id: str) -> Optional[PendingClassification]:
        """Record a result that needs review; re-classification refreshes the open entry."""
        if not result.needs_human_review:
            return None

        reason = result.review_category or ReviewReason.LOW_CONFIDENCE
        lock = self.lock_for(result.email_id)
        async with lock:
            async with self._session_factory() as db:
                pending = await PendingClassificationStore(db).upsert(
                    email_id=result.email_id,
                    firm_id=firm_id,
                    reason=reason.value,
                    review_note=result.review_reason,
                    suggested_cases=suggested_cases_payload(result),
                    detected_references=[
                        {
                            "type": r.type,
                            "rawValue": r.raw_value,
                            "normalizedValue": r.normalized_value,
                            "position": r.position,
                        }
                        for r in result.extracted_references
                    ],
                )
                await db.commit()

        logger.info(f"Queued email {result.email_id} for review: {reason.value}")
        return pending

    # ── Queries ────────────────────────────────────────────────

    async def list_pending(
        self,
        caller: CallerIdentity,
        queue_filter: Optional[QueueFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PendingPage:
        """Unresolved items of the caller's firm, newest first."""
        f = queue_filter or QueueFilter()
        filters = {
            "client_id": f.client_id,
            "reason": f.reason.value if f.reason else None,
            "created_after": f.created_after,
            "created_before": f.created_before,
        }
        async with self._session_factory() as db:
            store = PendingClassificationStore(db)
            items = await store.list_unresolved(caller.firm_id, limit=limit, offset=offset, **filters)
            total = await store.count_unresolved(caller.firm_id, **filters)

        return PendingPage(items=items, total=total, has_more=offset + len(items) < total)

    async def pending_count(self, caller: CallerIdentity) -> int:
        async with self._session_factory() as db:
            return await PendingClassificationStore(db).count_unresolved(caller.firm_id)

    async def email_history(self, email_id: str, caller: CallerIdentity) -> list[ClassificationLog]:
        async with self._session_factory() as db:
            await self._accessible_email(db, email_id, caller)
            return await ClassificationLogStore(db).for_email(email_id, caller.firm_id)

    async def classification_stats(self, caller: CallerIdentity, period: str = "WEEK") -> ClassificationStats:
        """Counts over the period; accuracy is the share of auto-assignments never moved."""
        window = STATS_PERIODS.get(period.upper())
        if window is None:
            raise ValueError(f"Unknown stats period: {period}")
        since = datetime.now(timezone.utc) - window

        async with self._session_factory() as db:
            logs = ClassificationLogStore(db)
            auto = await logs.count(caller.firm_id, since, ClassificationAction.ASSIGNED.value, was_automatic=True)
            manual = await logs.count(caller.firm_id, since, ClassificationAction.ASSIGNED.value, was_automatic=False)
            moved = await logs.count(caller.firm_id, since, ClassificationAction.MOVED.value)
            pending = await PendingClassificationStore(db).count_unresolved(caller.firm_id)

        accuracy = None
        if auto > 0:
            accuracy = max(0.0, min(1.0, (auto - moved) / auto))

        return ClassificationStats(
            auto_classified=auto,
            manually_reviewed=manual,
            moved_after_import=moved,
            pending_review=pending,
            ai_accuracy=accuracy,
        )

    # ── Decisions ──────────────────────────────────────────────

    async def assign(
        self,
        pending_id: str,
        target_case_id: str,
        caller: CallerIdentity,
        reason: Optional[str] = None,
    ) -> ClassificationLog:
        """Assign the pending email to a case and resolve the item."""
        email_id = await self._email_id_for(pending_id, caller)

        async with self.lock_for(email_id):
            async with self._session_factory() as db:
                pending = await self._open_pending(db, pending_id, caller)
                case = await self._accessible_case(db, target_case_id, caller)

                previous = await EmailRepository(db).update_case_assignment(pending.email_id, case.id)
                entry = await ClassificationLogStore(db).append(
                    email_id=pending.email_id,
                    firm_id=caller.firm_id,
                    action=ClassificationAction.ASSIGNED.value,
                    from_case_id=previous,
                    to_case_id=case.id,
                    match_type=LogMatchType.MANUAL.value,
                    was_automatic=False,
                    correction_reason=reason,
                    performed_by=caller.user_id,
                )
                await PendingClassificationStore(db).mark_resolved(pending, caller.user_id)
                await db.commit()

        logger.info(f"Assigned email {email_id} to case {target_case_id} (pending {pending_id})")
        return entry

    async def bulk_assign(
        self,
        pending_ids: Sequence[str],
        target_case_id: str,
        caller: CallerIdentity,
        reason: Optional[str] = None,
    ) -> BulkAssignResult:
        """Assign many items to one case; each item succeeds or fails on its own."""
        async with self._session_factory() as db:
            await self._accessible_case(db, target_case_id, caller)

        result = BulkAssignResult()
        for pending_id in pending_ids:
            try:
                await self.assign(pending_id, target_case_id, caller, reason)
                result.assigned_count += 1
            except Exception as e:
                logger.warning(f"Bulk assign failed for {pending_id}: {e}")
                result.errors.append(f"{pending_id}: {e}")

        logger.info(
            f"Bulk assigned {result.assigned_count}/{len(pending_ids)} items to case {target_case_id}"
        )
        return result

    async def dismiss(
        self,
        pending_id: str,
        caller: CallerIdentity,
        reason: Optional[str] = None,
    ) -> ClassificationLog:
        """Resolve the item without assigning the email to any case."""
        email_id = await self._email_id_for(pending_id, caller)

        async with self.lock_for(email_id):
            async with self._session_factory() as db:
                pending = await self._open_pending(db, pending_id, caller)
                email = await EmailRepository(db).get(pending.email_id)

                entry = await ClassificationLogStore(db).append(
                    email_id=pending.email_id,
                    firm_id=caller.firm_id,
                    action=ClassificationAction.UNASSIGNED.value,
                    from_case_id=email.case_id if email else None,
                    to_case_id=None,
                    match_type=LogMatchType.MANUAL.value,
                    was_automatic=False,
                    correction_reason=reason or DISMISS_REASON,
                    performed_by=caller.user_id,
                )
                await PendingClassificationStore(db).mark_resolved(pending, caller.user_id)
                await db.commit()

        logger.info(f"Dismissed pending {pending_id} for email {email_id}")
        return entry

    async def move_email(
        self,
        email_id: str,
        target_case_id: str,
        caller: CallerIdentity,
        reason: Optional[str] = None,
    ) -> ClassificationLog:
        """Correct an email's case after import.

        Recorded as MOVED, which is what the stats count against the
        automatic assignments. Any open review item for the email is resolved.
        """
        async with self.lock_for(email_id):
            async with self._session_factory() as db:
                await self._accessible_email(db, email_id, caller)
                case = await self._accessible_case(db, target_case_id, caller)

                pending_store = PendingClassificationStore(db)
                pending = await pending_store.get_unresolved_for_email(email_id)
                previous = await EmailRepository(db).update_case_assignment(email_id, case.id)
                entry = await ClassificationLogStore(db).append(
                    email_id=email_id,
                    firm_id=caller.firm_id,
                    action=ClassificationAction.MOVED.value,
                    from_case_id=previous,
                    to_case_id=case.id,
                    match_type=LogMatchType.MANUAL.value,
                    was_automatic=False,
                    correction_reason=reason,
                    performed_by=caller.user_id,
                )
                if pending is not None:
                    await pending_store.mark_resolved(pending, caller.user_id)
                await db.commit()

        logger.info(f"Moved email {email_id} from case {previous} to case {target_case_id}")
        return entry

    async def ignore_email(
        self,
        email_id: str,
        caller: CallerIdentity,
        reason: Optional[str] = None,
    ) -> ClassificationLog:
        """Mark an email as not case-related: detach it, log IGNORED, resolve its review item."""
        async with self.lock_for(email_id):
            async with self._session_factory() as db:
                await self._accessible_email(db, email_id, caller)

                pending_store = PendingClassificationStore(db)
                pending = await pending_store.get_unresolved_for_email(email_id)
                previous = await EmailRepository(db).mark_ignored(email_id)
                entry = await ClassificationLogStore(db).append(
                    email_id=email_id,
                    firm_id=caller.firm_id,
                    action=ClassificationAction.IGNORED.value,
                    from_case_id=previous,
                    to_case_id=None,
                    match_type=LogMatchType.MANUAL.value,
                    was_automatic=False,
                    correction_reason=reason,
                    performed_by=caller.user_id,
                )
                if pending is not None:
                    await pending_store.mark_resolved(pending, caller.user_id)
                await db.commit()

        logger.info(f"Ignored email {email_id}")
        return entry

    # ── Helpers ────────────────────────────────────────────────

    async def _email_id_for(self, pending_id: str, caller: CallerIdentity) -> str:
        async with self._session_factory() as db:
            pending = await PendingClassificationStore(db).get(pending_id)
            if pending is None:
                raise NotFoundError(f"Pending classification {pending_id} not found")
            _check_firm(pending.firm_id, caller, "Pending classification")
            return pending.email_id

    async def _open_pending(
        self, db: AsyncSession, pending_id: str, caller: CallerIdentity
    ) -> PendingClassification:
        pending = await PendingClassificationStore(db).get(pending_id, for_update=True)
        if pending is None:
            raise NotFoundError(f"Pending classification {pending_id} not found")
        _check_firm(pending.firm_id, caller, "Pending classification")
        if pending.is_resolved:
            raise AlreadyResolvedError(f"Pending classification {pending_id} is already resolved")
        return pending

    async def _accessible_email(self, db: AsyncSession, email_id: str, caller: CallerIdentity) -> Email:
        email = await EmailRepository(db).get(email_id)
        if email is None:
            raise NotFoundError(f"Email {email_id} not found")
        _check_firm(email.firm_id, caller, "Email")
        return email

    async def _accessible_case(self, db: AsyncSession, case_id: str, caller: CallerIdentity) -> Case:
        case = await CaseRepository(db).get(case_id)
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")
        _check_firm(case.firm_id, caller, "Case")
        return case


review_queue = ReviewQueueManager()
