"""Batch classification — runs the classifier over many emails for one client."""

import asyncio
import logging
import time
from typing import Optional, Sequence

from casemail.services.classifier import EmailClassifier
from casemail.services.types import (
    BatchClassificationResult,
    CaseCandidate,
    CaseClassificationSummary,
    ClassificationResult,
    EmailMessage,
    GlobalSource,
)

logger = logging.getLogger(__name__)


class ClassificationBatchRunner:
    """Classifies emails independently, with bounded concurrency and per-email fault isolation."""

    def __init__(self, classifier: EmailClassifier, concurrency: int = 4):
        self.classifier = classifier
        self.concurrency = max(1, concurrency)

    async def classify_batch(
        self,
        emails: Sequence[EmailMessage],
        client_cases: Sequence[CaseCandidate],
        global_sources: Sequence[GlobalSource] = (),
    ) -> BatchClassificationResult:
        """Classify every email and summarise the outcome per case."""
        start = time.monotonic()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def classify_one(email: EmailMessage) -> Optional[ClassificationResult]:
            async with semaphore:
                try:
                    return await self.classifier.classify(email, client_cases, global_sources)
                except Exception as e:
                    logger.error(f"Failed to classify email {email.id}: {e}")
                    return None

        outcomes = await asyncio.gather(*(classify_one(email) for email in emails))

        result = BatchClassificationResult(total_emails=len(emails))
        for email, outcome in zip(emails, outcomes):
            if outcome is None:
                result.failed_email_ids.append(email.id)
            else:
                result.classifications.append(outcome)

        result.by_case = summarize_by_case(result.classifications, client_cases)
        result.needs_review = sum(1 for c in result.classifications if c.needs_human_review)
        result.unclassified = sum(1 for c in result.classifications if not c.suggested_case_id)
        result.processing_time_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"Classified {len(result.classifications)}/{result.total_emails} emails: "
            f"needs_review={result.needs_review}, unclassified={result.unclassified}, "
            f"failed={len(result.failed_email_ids)}"
        )
        return result


def summarize_by_case(
    classifications: Sequence[ClassificationResult],
    client_cases: Sequence[CaseCandidate],
) -> list[CaseClassificationSummary]:
    """One summary per client case; results without a suggested case are left out."""
    summaries = {
        case.id: CaseClassificationSummary(case_id=case.id)
        for case in sorted(client_cases, key=lambda c: c.id)
    }

    for classification in classifications:
        summary = summaries.get(classification.suggested_case_id)
        if summary is None:
            continue
        summary.email_count += 1
        if classification.needs_human_review:
            summary.needs_review += 1
        else:
            summary.auto_classified += 1

    return list(summaries.values())
