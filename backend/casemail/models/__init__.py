from casemail.models.email import Email
from casemail.models.case import Case, CaseActor
from casemail.models.global_source import GlobalEmailSource
from casemail.models.pending import PendingClassification
from casemail.models.classification_log import ClassificationLog

__all__ = [
    "Email",
    "Case",
    "CaseActor",
    "GlobalEmailSource",
    "PendingClassification",
    "ClassificationLog",
]
