"""Email-to-case classifier — picks the case an email belongs to and whether a human must confirm it."""

import logging
from typing import Optional, Sequence

from casemail.services.domain_matcher import matches_domain
from casemail.services.reference_extractor import extract_references
from casemail.services.scoring import CaseScorer
from casemail.services.semantic import SemanticFallback
from casemail.services.types import (
    AlternativeCase,
    CaseCandidate,
    CaseScore,
    ClassificationResult,
    ClassificationThresholds,
    EmailMessage,
    GlobalSource,
    MatchType,
    ReviewReason,
)

logger = logging.getLogger(__name__)

# Below this confidence an auto-assignment is flagged as a suggestion in the UI
SUGGESTED_ASSIGNMENT_CEILING = 0.8
# Second-best must reach this share of the review threshold to be listed
ALTERNATIVE_FLOOR_RATIO = 0.5
# Listed alternative above this share of the review threshold makes a gray-zone result a conflict
CONFLICT_RATIO = 0.7

REVIEW_NO_CASES = "No active cases found for client"
REVIEW_COURT_NO_REFERENCE = "Email from court/authority but no reference number found"
REVIEW_LOW_CONFIDENCE = "Low confidence classification"
REVIEW_CONFLICT = "Multiple cases with similar confidence"


def match_global_source(
    sender_address: str, sources: Sequence[GlobalSource]
) -> Optional[GlobalSource]:
    """Return the first global source whose emails or domain globs match the sender."""
    sender = (sender_address or "").strip().lower()
    if not sender:
        return None

    for source in sources:
        if any(e.strip().lower() == sender for e in source.emails if e):
            return source
        if source.domains and matches_domain(sender, source.domains):
            return source
    return None


def rank(
    candidates: Sequence[CaseCandidate], scores: dict[str, CaseScore]
) -> tuple[Optional[CaseScore], Optional[CaseScore]]:
    """Best and second-best scores in canonical candidate order.

    Comparisons are strict, so on a tie the candidate seen first stays ahead.
    A candidate needs a positive score to be ranked at all.
    """
    best: Optional[CaseScore] = None
    second: Optional[CaseScore] = None
    for case in candidates:
        score = scores[case.id]
        if score.score > (best.score if best else 0.0):
            second = best
            best = score
        elif score.score > (second.score if second else 0.0):
            second = score
    return best, second


class EmailClassifier:
    """Classifies one email against the active cases of its client."""

    def __init__(
        self,
        thresholds: Optional[ClassificationThresholds] = None,
        semantic: Optional[SemanticFallback] = None,
    ):
        self.thresholds = thresholds or ClassificationThresholds()
        self.scorer = CaseScorer(self.thresholds)
        self.semantic = semantic

    async def classify(
        self,
        email: EmailMessage,
        candidate_cases: Sequence[CaseCandidate],
        global_sources: Sequence[GlobalSource] = (),
    ) -> ClassificationResult:
        t = self.thresholds

        if not candidate_cases:
            return ClassificationResult(
                email_id=email.id,
                needs_human_review=True,
                review_reason=REVIEW_NO_CASES,
                review_category=ReviewReason.NO_MATCHING_CASE,
            )

        if len(candidate_cases) == 1:
            return ClassificationResult(
                email_id=email.id,
                suggested_case_id=candidate_cases[0].id,
                confidence=1.0,
                match_type=MatchType.ACTOR,
                reasons=("Client has only one active case",),
                is_unknown_sender=False,
            )

        candidates = sorted(candidate_cases, key=lambda c: c.id)
        sender_reasons: list[str] = []

        source = match_global_source(email.sender.address, global_sources)
        is_global = source is not None
        if source:
            sender_reasons.append(f"Sender is a {source.category}: {source.name}")

        references = extract_references(email.classification_text)

        scores = {
            case.id: self.scorer.score_candidate(email, case, references, is_global)
            for case in candidates
        }
        best, second = rank(candidates, scores)

        if (best is None or best.score < t.needs_review) and not is_global and self.semantic:
            if await self.semantic.apply(email, candidates, scores, t.semantic_weight):
                best, second = rank(candidates, scores)

        is_unknown_sender = not is_global and not any(s.actor_matched for s in scores.values())

        confidence = min(best.score, 1.0) if best else 0.0
        alternatives: tuple[AlternativeCase, ...] = ()
        if best and second and second.score >= t.needs_review * ALTERNATIVE_FLOOR_RATIO:
            alternatives = (AlternativeCase(
                case_id=second.case_id,
                confidence=min(second.score, 1.0),
                reason="; ".join(second.reasons),
            ),)

        review_reason, review_category = self._review_decision(
            confidence=confidence,
            has_suggestion=best is not None,
            is_global=is_global,
            has_references=bool(references),
            alternatives=alternatives,
        )

        result = ClassificationResult(
            email_id=email.id,
            suggested_case_id=best.case_id if best else None,
            confidence=confidence,
            match_type=best.match_type if best else MatchType.NONE,
            reasons=tuple(best.reasons) if best else tuple(sender_reasons),
            alternative_cases=alternatives,
            needs_human_review=review_reason is not None,
            review_reason=review_reason,
            review_category=review_category,
            extracted_references=tuple(references),
            is_global_source=is_global,
            global_source_name=source.name if source else None,
            is_unknown_sender=is_unknown_sender,
            is_suggested_assignment=confidence < SUGGESTED_ASSIGNMENT_CEILING,
        )

        logger.debug(
            f"Classified email {email.id}: case={result.suggested_case_id}, "
            f"confidence={result.confidence:.2f}, match={result.match_type.value}, "
            f"review={result.review_reason}"
        )
        return result

    def _review_decision(
        self,
        confidence: float,
        has_suggestion: bool,
        is_global: bool,
        has_references: bool,
        alternatives: Sequence[AlternativeCase],
    ) -> tuple[Optional[str], Optional[ReviewReason]]:
        """Apply the review checks in priority order; the first that fires wins."""
        t = self.thresholds

        if is_global and not has_references:
            return REVIEW_COURT_NO_REFERENCE, ReviewReason.COURT_NO_REFERENCE

        if confidence < t.needs_review:
            if has_suggestion:
                return REVIEW_LOW_CONFIDENCE, ReviewReason.LOW_CONFIDENCE
            if is_global:
                return REVIEW_LOW_CONFIDENCE, ReviewReason.NO_MATCHING_CASE
            return REVIEW_LOW_CONFIDENCE, ReviewReason.UNKNOWN_CONTACT

        if t.needs_review <= confidence < t.auto_assign:
            if alternatives and alternatives[0].confidence > t.needs_review * CONFLICT_RATIO:
                return REVIEW_CONFLICT, ReviewReason.MULTI_CASE_CONFLICT

        return None, None
