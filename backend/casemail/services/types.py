"""Domain records shared by the classification pipeline.

These are plain dataclasses, independent of the ORM: repositories convert
database rows into them, and the classifier only ever sees these.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional

from casemail.services.email_text import build_preview


class MatchType(str, Enum):
    """Which evidence signal decided a classification (display only)."""
    ACTOR = "ACTOR"
    REFERENCE = "REFERENCE"
    KEYWORD = "KEYWORD"
    SEMANTIC = "SEMANTIC"
    NONE = "NONE"


class ReviewReason(str, Enum):
    """Why a classification was sent to the review queue."""
    MULTI_CASE_CONFLICT = "MultiCaseConflict"
    LOW_CONFIDENCE = "LowConfidence"
    NO_MATCHING_CASE = "NoMatchingCase"
    COURT_NO_REFERENCE = "CourtNoReference"
    UNKNOWN_CONTACT = "UnknownContact"


class ClassificationAction(str, Enum):
    ASSIGNED = "Assigned"
    MOVED = "Moved"
    IGNORED = "Ignored"
    UNASSIGNED = "Unassigned"


class LogMatchType(str, Enum):
    """Match type as recorded in the audit log."""
    ACTOR = "Actor"
    REFERENCE = "ReferenceNumber"
    KEYWORD = "Keyword"
    SEMANTIC = "Semantic"
    GLOBAL_SOURCE = "GlobalSource"
    MANUAL = "Manual"


@dataclass(frozen=True)
class ClassificationThresholds:
    """Policy constants. Any values may be retuned; the review checks keep their order."""
    auto_assign: float = 0.85
    needs_review: float = 0.5
    actor_match_weight: float = 0.4
    reference_match_weight: float = 0.3
    global_source_reference_weight: float = 0.95
    keyword_match_weight: float = 0.2
    keyword_step: float = 0.1
    subject_pattern_weight: float = 0.15
    semantic_weight: float = 0.1


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated user on whose behalf an operation runs."""
    user_id: str
    firm_id: str


@dataclass(frozen=True)
class Sender:
    address: str
    name: Optional[str] = None


@dataclass(frozen=True)
class EmailMessage:
    """An inbound email as seen by the classifier."""
    id: str
    subject: str = ""
    body_preview: str = ""
    body_content: Optional[str] = None
    sender: Sender = field(default_factory=lambda: Sender(address=""))
    received_at: Optional[datetime] = None
    has_attachments: bool = False

    @property
    def preview(self) -> str:
        if self.body_preview:
            return self.body_preview
        return build_preview(self.body_content)

    @property
    def classification_text(self) -> str:
        return f"{self.subject or ''} {self.preview}"


@dataclass(frozen=True)
class CaseActor:
    id: str
    email: Optional[str] = None
    email_domains: tuple[str, ...] = ()


@dataclass(frozen=True)
class CaseCandidate:
    """An active case that an email may belong to."""
    id: str
    title: str
    case_type: str = ""
    description: str = ""
    keywords: tuple[str, ...] = ()
    reference_numbers: tuple[str, ...] = ()
    subject_patterns: tuple[str, ...] = ()
    classification_notes: Optional[str] = None
    actors: tuple[CaseActor, ...] = ()
    client_id: Optional[str] = None
    firm_id: Optional[str] = None


@dataclass(frozen=True)
class GlobalSource:
    """Firm-wide institutional sender (court, authority) that is never a case actor."""
    id: str
    name: str
    category: str
    emails: tuple[str, ...] = ()
    domains: tuple[str, ...] = ()
    classification_hint: Optional[str] = None


@dataclass(frozen=True)
class ExtractedReference:
    type: str
    raw_value: str
    normalized_value: str
    position: int


@dataclass(frozen=True)
class AlternativeCase:
    case_id: str
    confidence: float
    reason: str


@dataclass
class CaseScore:
    """Running evidence score of one candidate case."""
    case_id: str
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    match_type: MatchType = MatchType.NONE
    actor_matched: bool = False

    def add(self, weight: float, reason: str, match_type: MatchType) -> None:
        self.score += weight
        self.reasons.append(reason)
        if self.match_type == MatchType.NONE:
            self.match_type = match_type


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one email. A new classification supersedes, never updates."""
    email_id: str
    suggested_case_id: Optional[str] = None
    confidence: float = 0.0
    match_type: MatchType = MatchType.NONE
    reasons: tuple[str, ...] = ()
    alternative_cases: tuple[AlternativeCase, ...] = ()
    needs_human_review: bool = False
    review_reason: Optional[str] = None
    review_category: Optional[ReviewReason] = None
    extracted_references: tuple[ExtractedReference, ...] = ()
    is_global_source: bool = False
    global_source_name: Optional[str] = None
    is_unknown_sender: bool = True
    is_suggested_assignment: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["match_type"] = self.match_type.value
        data["review_category"] = self.review_category.value if self.review_category else None
        return data


@dataclass
class CaseClassificationSummary:
    case_id: str
    email_count: int = 0
    auto_classified: int = 0
    needs_review: int = 0


@dataclass
class BatchClassificationResult:
    total_emails: int
    classifications: list[ClassificationResult] = field(default_factory=list)
    by_case: list[CaseClassificationSummary] = field(default_factory=list)
    needs_review: int = 0
    unclassified: int = 0
    failed_email_ids: list[str] = field(default_factory=list)
    processing_time_ms: int = 0
