"""Wildcard-aware email domain matching."""

import re
from typing import Iterable


def get_email_domain(address: str) -> str:
    """Return the lower-cased domain of an address, or "" if there is none."""
    parts = (address or "").strip().lower().split("@")
    return parts[1] if len(parts) == 2 else ""


def _domain_regex(pattern: str) -> re.Pattern:
    escaped = re.escape(pattern.strip().lower()).replace(r"\*", ".*")
    return re.compile(rf"^{escaped}$")


def matches_domain(address: str, patterns: Iterable[str]) -> bool:
    """Check the address's domain against glob patterns such as ``*.example.com``.

    Matching is case-insensitive and anchored to the whole domain.
    """
    domain = get_email_domain(address)
    if not domain:
        return False
    return any(_domain_regex(pattern).match(domain) for pattern in patterns if pattern)
