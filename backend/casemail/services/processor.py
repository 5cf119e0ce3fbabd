"""Classification processor — loads a client's cases and emails, classifies, and routes results."""

import logging
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from casemail.config import settings
from casemail.database import async_session
from casemail.exceptions import AuthorizationError, NotFoundError
from casemail.repositories import (
    CaseRepository,
    ClassificationLogStore,
    EmailRepository,
    GlobalSourceRepository,
    PendingClassificationStore,
    to_message,
)
from casemail.services.batch import ClassificationBatchRunner
from casemail.services.classifier import EmailClassifier
from casemail.services.review_queue import ReviewQueueManager, review_queue
from casemail.services.semantic import OllamaClassifier, SemanticFallback
from casemail.services.types import (
    BatchClassificationResult,
    CallerIdentity,
    ClassificationAction,
    ClassificationResult,
    LogMatchType,
    MatchType,
)

logger = logging.getLogger(__name__)

_LOG_MATCH_TYPES = {
    MatchType.ACTOR: LogMatchType.ACTOR,
    MatchType.REFERENCE: LogMatchType.REFERENCE,
    MatchType.KEYWORD: LogMatchType.KEYWORD,
    MatchType.SEMANTIC: LogMatchType.SEMANTIC,
}


def log_match_type(result: ClassificationResult) -> Optional[str]:
    """Audit-log match type for an automatic assignment."""
    if result.is_global_source and result.match_type == MatchType.REFERENCE:
        return LogMatchType.GLOBAL_SOURCE.value
    match = _LOG_MATCH_TYPES.get(result.match_type)
    return match.value if match else None


def build_runner() -> ClassificationBatchRunner:
    """Classifier pipeline wired from settings, with the Ollama semantic fallback."""
    thresholds = settings.thresholds()
    semantic = SemanticFallback(OllamaClassifier())
    classifier = EmailClassifier(thresholds=thresholds, semantic=semantic)
    return ClassificationBatchRunner(classifier, concurrency=settings.classification_concurrency)


class ClassificationProcessor:
    """Runs classification for a client and applies the outcome.

    Results confident enough are assigned straight away with an automatic
    log entry; everything else goes to the review queue.
    """

    def __init__(
        self,
        session_factory=None,
        runner: Optional[ClassificationBatchRunner] = None,
        review: Optional[ReviewQueueManager] = None,
    ):
        self._session_factory = session_factory or async_session
        self.runner = runner or build_runner()
        self.review = review or review_queue

    async def preview_for_case(
        self, case_id: str, addresses: Sequence[str], caller: CallerIdentity
    ) -> BatchClassificationResult:
        """Classify the emails exchanged with ``addresses`` before importing them into a case.

        Nothing is written.
        """
        async with self._session_factory() as db:
            case = await CaseRepository(db).get(case_id)
            if case is None:
                raise NotFoundError(f"Case {case_id} not found")
            if case.firm_id != caller.firm_id:
                raise AuthorizationError("Case belongs to another firm")

            candidates = await CaseRepository(db).find_active_cases_for_client(case.client_id, caller.firm_id)
            sources = await GlobalSourceRepository(db).list_for_firm(caller.firm_id)
            emails = await EmailRepository(db).find_by_participants(addresses, caller.firm_id)
            messages = [to_message(e) for e in emails]

        logger.info(f"Preview for case {case_id}: {len(messages)} emails, {len(candidates)} candidate cases")
        return await self.runner.classify_batch(messages, candidates, sources)

    async def process_emails(
        self, client_id: str, email_ids: Sequence[str], caller: CallerIdentity
    ) -> dict:
        """Classify the given emails against the client's active cases and route each result."""
        counts = {"processed": 0, "auto_assigned": 0, "queued": 0, "failed": 0}

        async with self._session_factory() as db:
            candidates = await CaseRepository(db).find_active_cases_for_client(client_id, caller.firm_id)
            sources = await GlobalSourceRepository(db).list_for_firm(caller.firm_id)
            emails = await EmailRepository(db).get_many(email_ids, caller.firm_id)
            messages = [to_message(e) for e in emails]

        missing = len(set(email_ids)) - len(messages)
        if missing:
            logger.warning(f"{missing} of {len(set(email_ids))} emails not found for firm {caller.firm_id}")
        counts["failed"] += missing

        if not messages:
            return counts

        batch = await self.runner.classify_batch(messages, candidates, sources)
        counts["failed"] += len(batch.failed_email_ids)

        for result in batch.classifications:
            try:
                if result.needs_human_review:
                    await self.review.enqueue(result, caller.firm_id)
                    counts["queued"] += 1
                elif result.suggested_case_id:
                    await self._auto_assign(result, caller)
                    counts["auto_assigned"] += 1
                counts["processed"] += 1
            except Exception as e:
                logger.error(f"Failed to route classification for email {result.email_id}: {e}")
                counts["failed"] += 1

        logger.info(
            f"Processed client {client_id}: processed={counts['processed']}, "
            f"auto_assigned={counts['auto_assigned']}, queued={counts['queued']}, "
            f"failed={counts['failed']}"
        )
        return counts

    async def _auto_assign(self, result: ClassificationResult, caller: CallerIdentity):
        async with self.review.lock_for(result.email_id):
            async with self._session_factory() as db:
                await self._apply_assignment(db, result, caller)
                await db.commit()

    async def _apply_assignment(self, db: AsyncSession, result: ClassificationResult, caller: CallerIdentity):
        pending_store = PendingClassificationStore(db)
        pending = await pending_store.get_unresolved_for_email(result.email_id)

        previous = await EmailRepository(db).update_case_assignment(result.email_id, result.suggested_case_id)
        await ClassificationLogStore(db).append(
            email_id=result.email_id,
            firm_id=caller.firm_id,
            action=ClassificationAction.ASSIGNED.value,
            from_case_id=previous,
            to_case_id=result.suggested_case_id,
            match_type=log_match_type(result),
            was_automatic=True,
            confidence=result.confidence,
            performed_by=caller.user_id,
        )

        # A confident re-classification settles any open review item
        if pending is not None:
            await pending_store.mark_resolved(pending, caller.user_id)

    async def close(self):
        """Release the semantic fallback's HTTP client."""
        semantic = self.runner.classifier.semantic
        if semantic is not None:
            await semantic.close()


classification_processor = ClassificationProcessor()
