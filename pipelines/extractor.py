"""Content extraction for crawled HTML pages."""

import hashlib
import re
from typing import NamedTuple

from bs4 import BeautifulSoup

MIN_TEXT_LENGTH = 80

# Elements that never carry readable page content
NON_CONTENT_TAGS = ["script", "style", "noscript", "template", "iframe", "svg", "form"]

# Site chrome repeated on every page
CHROME_TAGS = ["nav", "header", "footer", "aside"]

CONTENT_REGIONS = ["main", "article"]

_WHITESPACE = re.compile(r"\s+")


class ExtractedContent(NamedTuple):
    text: str
    title: str


def _clean(value: str) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def extract_content(html: str) -> ExtractedContent:
    """Turn page markup into normalized plain text plus a title.

    The text is the page title and first heading followed by the text of the
    ``<main>`` region, else the first ``<article>``, else the whole body. Site
    chrome (nav, header, footer, aside) is dropped first, so boilerplate
    changes do not alter the content hash. Whitespace is collapsed.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    for element in soup(NON_CONTENT_TAGS):
        element.decompose()

    title = _clean(soup.title.get_text()) if soup.title else ""
    h1_tag = soup.find("h1")
    h1 = _clean(h1_tag.get_text(" ")) if h1_tag else ""

    for element in soup(CHROME_TAGS):
        element.decompose()

    body_text = ""
    for name in CONTENT_REGIONS:
        region = soup.find(name)
        body_text = _clean(region.get_text(" ")) if region else ""
        if body_text:
            break
    if not body_text:
        root = soup.body or soup
        body_text = _clean(root.get_text(" "))

    header = " - ".join(part for part in (title, h1) if part)
    text = _clean(f"{header} {body_text}" if header else body_text)
    return ExtractedContent(text=text, title=title or h1)


def is_too_short(text: str, min_length: int = MIN_TEXT_LENGTH) -> bool:
    return not text or len(text) < min_length


def content_hash(text: str) -> str:
    """SHA-256 hex digest of extracted text, used for change detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
