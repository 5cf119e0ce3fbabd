"""Reference extraction — court file numbers found in email text.

Romanian court files are written as ``number/court/year`` (``1234/3/2024``),
usually introduced by "dosar", "dosarul" or "nr.", sometimes with spaces
around the slashes. Extraction is pure and order-stable: results are sorted
by position and deduplicated on their normalized value, first occurrence
wins.
"""

import re
from typing import Iterable

from casemail.services.types import ExtractedReference

COURT_FILE = "court_file"

_FILE_NUMBER = r"\d{1,5}\s*/\s*\d{1,3}\s*/\s*\d{4}"

# Evaluated in order; a later pattern never re-adds a value an earlier one found
_COURT_PATTERNS = [
    re.compile(rf"(?:dosar(?:ul)?|nr\.?\s*dosar)\s*(?:nr\.?\s*)?({_FILE_NUMBER})", re.IGNORECASE),
    re.compile(rf"(?<!\d)nr\.?\s*({_FILE_NUMBER})", re.IGNORECASE),
    re.compile(rf"(?<![/\d])({_FILE_NUMBER})(?![/\d])"),
]

_WHITESPACE = re.compile(r"\s+")


def normalize_reference(value: str) -> str:
    """Strip all whitespace and upper-case, for comparison."""
    return _WHITESPACE.sub("", value or "").upper()


def extract_references(text: str) -> list[ExtractedReference]:
    """Extract court file references from free text."""
    if not text:
        return []

    references: list[ExtractedReference] = []
    seen: set[str] = set()

    for pattern in _COURT_PATTERNS:
        for match in pattern.finditer(text):
            normalized = normalize_reference(match.group(1))
            if normalized in seen:
                continue
            seen.add(normalized)
            references.append(ExtractedReference(
                type=COURT_FILE,
                raw_value=match.group(0).strip(),
                normalized_value=normalized,
                position=match.start(),
            ))

    return sorted(references, key=lambda ref: ref.position)


def match_references(
    references: Iterable[ExtractedReference],
    case_reference_numbers: Iterable[str],
) -> list[ExtractedReference]:
    """Return the extracted references that equal one of the case's reference numbers."""
    known = {normalize_reference(ref) for ref in case_reference_numbers if ref}
    if not known:
        return []
    return [ref for ref in references if ref.normalized_value in known]
