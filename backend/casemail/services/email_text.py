"""Email text helpers — plain-text previews and address normalisation."""

import re
from typing import Optional

from bs4 import BeautifulSoup

# Mail providers cap their stored preview at 255 characters
PREVIEW_LENGTH = 255

_HTML_HINT = re.compile(r"<\s*(html|body|div|p|br|span|table|a)\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def html_to_text(html: str) -> str:
    """Render an HTML body as plain text."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return soup.get_text(separator=" ", strip=True)


def build_preview(body: Optional[str], length: int = PREVIEW_LENGTH) -> str:
    """Build a short single-line preview from a text or HTML body."""
    if not body:
        return ""
    text = html_to_text(body) if _HTML_HINT.search(body) else body
    return _WHITESPACE.sub(" ", text).strip()[:length]


def normalize_address(address: Optional[str]) -> str:
    return (address or "").strip().lower()
