"""Case scoring — weighs the evidence that an email belongs to one candidate case."""

import logging
import re
from typing import Optional, Sequence

from casemail.services.domain_matcher import matches_domain
from casemail.services.reference_extractor import match_references
from casemail.services.types import (
    CaseActor,
    CaseCandidate,
    CaseScore,
    ClassificationThresholds,
    EmailMessage,
    ExtractedReference,
    MatchType,
)

logger = logging.getLogger(__name__)

_GLOB_SPECIALS = re.compile(r"[.+^${}()|\[\]\\]")


def glob_to_regex(pattern: str) -> str:
    """Translate a subject glob (``*`` and ``?`` wildcards) into an unanchored regex."""
    escaped = _GLOB_SPECIALS.sub(lambda m: "\\" + m.group(0), pattern.lower())
    return escaped.replace("*", ".*").replace("?", ".")


def match_actor(sender_address: str, actors: Sequence[CaseActor]) -> Optional[CaseActor]:
    """Find the first actor whose email or domain globs match the sender."""
    sender = (sender_address or "").strip().lower()
    if not sender:
        return None

    for actor in actors:
        if actor.email and actor.email.strip().lower() == sender:
            return actor
        if actor.email_domains and matches_domain(sender, actor.email_domains):
            return actor
    return None


def match_keywords(text: str, keywords: Sequence[str]) -> list[str]:
    """Return the keywords found (case-insensitive substring) in the text."""
    text_lower = (text or "").lower()
    return [kw for kw in keywords if kw and kw.lower() in text_lower]


def match_subject_patterns(subject: str, patterns: Sequence[str]) -> Optional[str]:
    """Return the first subject pattern that matches, ignoring invalid ones."""
    subject_lower = (subject or "").lower()
    for pattern in patterns:
        if not pattern:
            continue
        try:
            if re.search(glob_to_regex(pattern), subject_lower):
                return pattern
        except re.error as e:
            logger.warning(f"Invalid subject pattern {pattern!r}: {e}")
    return None


class CaseScorer:
    """Computes the additive evidence score of one email against one case.

    Contributions are independent, so evaluation order only affects the order
    of reasons and which match type is reported first:

    - reference number (strongest; near-certain for court/authority senders)
    - case actor sender (skipped for global sources, which are never parties)
    - keywords (diminishing: one step per hit, capped)
    - subject glob pattern
    """

    def __init__(self, thresholds: Optional[ClassificationThresholds] = None):
        self.thresholds = thresholds or ClassificationThresholds()

    def score_candidate(
        self,
        email: EmailMessage,
        case: CaseCandidate,
        extracted_refs: Sequence[ExtractedReference],
        is_global_source: bool,
    ) -> CaseScore:
        t = self.thresholds
        score = CaseScore(case_id=case.id)

        ref_matches = match_references(extracted_refs, case.reference_numbers)
        if ref_matches:
            weight = t.global_source_reference_weight if is_global_source else t.reference_match_weight
            score.add(
                weight,
                f"Reference number match: {', '.join(r.normalized_value for r in ref_matches)}",
                MatchType.REFERENCE,
            )

        if not is_global_source:
            actor = match_actor(email.sender.address, case.actors)
            if actor:
                score.actor_matched = True
                score.add(
                    t.actor_match_weight,
                    f"Sender matches case actor: {actor.email or 'domain match'}",
                    MatchType.ACTOR,
                )

        keywords = match_keywords(email.classification_text, case.keywords)
        if keywords:
            score.add(
                min(len(keywords) * t.keyword_step, t.keyword_match_weight),
                f"Keyword matches: {', '.join(keywords)}",
                MatchType.KEYWORD,
            )

        pattern = match_subject_patterns(email.subject, case.subject_patterns)
        if pattern:
            score.add(
                t.subject_pattern_weight,
                f"Subject pattern match: {pattern}",
                MatchType.KEYWORD,
            )

        return score
