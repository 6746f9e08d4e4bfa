"""Heuristic field extraction for CBP ruling pages.

Every function here is pure. Each heuristic is best effort: when a field
cannot be recovered it comes back empty rather than raising.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional, Set, Tuple

from bs4 import BeautifulSoup

# 4 digits, dot, 2 digits, optionally dot + 2-4 digits. The guards reject
# codes glued to other digits ("640291") or mis-grouped ("64.02.91.50").
HTS_CODE_PATTERN = re.compile(r'(?<!\d)(?<!\d\.)\d{4}\.\d{2}(?:\.\d{2,4})?(?!\.?\d)')
HTS_CODE_FORMAT = re.compile(r'\d{4}\.\d{2}(?:\.\d{2,4})?')

MONTHS = (
    'January', 'February', 'March', 'April', 'May', 'June', 'July',
    'August', 'September', 'October', 'November', 'December',
)
ISSUE_DATE_PATTERN = re.compile(
    r'\b(' + '|'.join(MONTHS) + r')\s+(\d{1,2}),?\s+(\d{4})\b'
)

CLASSIFICATION_PATTERN = re.compile(
    r'(?:classified|classifiable|proper classification)[^.]{0,200}?'
    r'\d{4}\.\d{2}(?:\.\d{2,4})?[^.]{0,100}',
    re.IGNORECASE,
)

DESCRIPTION_CUES = ('classification', 'merchandise', 'article', 'product')
DESCRIPTION_MIN_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 500

MIN_CONTENT_LENGTH = 100
MIN_TERM_LENGTH = 4
KEYWORD_LIMIT = 20

CONTENT_SELECTORS = '.ruling-content, .ruling-text, .content, main'

STOPWORDS = frozenset({
    'that', 'this', 'with', 'from', 'have', 'been', 'were', 'they',
    'will', 'would', 'could', 'should', 'their', 'which', 'there',
    'these', 'those', 'other', 'into', 'such', 'than', 'only', 'also',
    'made', 'make', 'well', 'must', 'said', 'each', 'does', 'very',
    'what', 'when', 'where', 'your', 'about', 'being', 'because',
    'them', 'then', 'some', 'more', 'most', 'here', 'upon', 'while',
    'designed', 'within', 'under', 'over', 'after', 'before',
})


@dataclass
class ExtractedRuling:
    """Structured fields recovered from one ruling page."""
    hts_codes: Set[str]
    issue_date: Optional[date]
    product_description: str
    classification: str
    rationale: str
    keywords: List[str] = field(default_factory=list)


def is_valid_hts_code(code: str) -> bool:
    """Check that a string is exactly one HTS code."""
    return bool(code) and HTS_CODE_FORMAT.fullmatch(code) is not None


def extract_hts_codes(text: str) -> Set[str]:
    """Return the distinct HTS codes mentioned in the text."""
    if not text:
        return set()
    return set(HTS_CODE_PATTERN.findall(text))


def extract_issue_date(text: str) -> Optional[date]:
    """Parse the first long-form date ("January 5, 2021") in the text."""
    if not text:
        return None

    match = ISSUE_DATE_PATTERN.search(text)
    if not match:
        return None

    month, day, year = match.groups()
    try:
        return datetime.strptime(f"{month} {day} {year}", "%B %d %Y").date()
    except ValueError:
        # e.g. "February 30, 2021"
        return None


def extract_description_and_classification(paragraphs: List[str],
                                           text: Optional[str] = None) -> Tuple[str, str]:
    """Pick the product description paragraph and the classification snippet.

    Args:
        paragraphs: Document paragraphs in order
        text: Full document text to search for the classification phrase.
              Defaults to the paragraphs joined together.

    Returns:
        Tuple of (description, classification snippet)
    """
    description = ""
    for paragraph in paragraphs:
        lowered = paragraph.lower()
        if (DESCRIPTION_MIN_LENGTH < len(paragraph) < DESCRIPTION_MAX_LENGTH
                and any(cue in lowered for cue in DESCRIPTION_CUES)):
            description = paragraph
            break
    else:
        if paragraphs:
            description = paragraphs[0]

    if text is None:
        text = "\n".join(paragraphs)

    match = CLASSIFICATION_PATTERN.search(text or "")
    classification = match.group(0).strip() if match else ""
    return description, classification


def normalize_terms(text: str) -> List[str]:
    """Lowercase, keep letters only, drop short tokens and stopwords."""
    if not text:
        return []
    cleaned = re.sub(r'[^a-z\s]', ' ', text.lower())
    return [
        token for token in cleaned.split()
        if len(token) >= MIN_TERM_LENGTH and token not in STOPWORDS
    ]


def extract_keywords(text: str, limit: int = KEYWORD_LIMIT) -> List[str]:
    """Return the most frequent terms, ties broken by first occurrence."""
    counts = Counter(normalize_terms(text))
    # Counter preserves first-occurrence order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [term for term, _ in ranked[:limit]]


def _document_root(html: str):
    soup = BeautifulSoup(html or "", 'html.parser')
    for element in soup(['script', 'style', 'nav', 'footer', 'header']):
        element.decompose()
    return soup


def html_to_text(html: str) -> str:
    """Return the ruling body text from the page's content container."""
    soup = _document_root(html)
    containers = soup.select(CONTENT_SELECTORS)
    if containers:
        text = "\n".join(c.get_text(separator=' ') for c in containers)
    else:
        body = soup.body or soup
        text = body.get_text(separator=' ')
    return re.sub(r'[ \t\r\f\v]+', ' ', text).strip()


def html_to_paragraphs(html: str) -> List[str]:
    """Return the non-empty ``<p>`` texts in document order."""
    soup = _document_root(html)
    paragraphs = []
    for p in soup.find_all('p'):
        paragraph = re.sub(r'\s+', ' ', p.get_text(separator=' ')).strip()
        if paragraph:
            paragraphs.append(paragraph)
    return paragraphs


def extract_ruling_fields(html: str,
                          min_content_length: int = MIN_CONTENT_LENGTH) -> Optional[ExtractedRuling]:
    """Extract every structured field from a ruling page.

    Returns None when the body is too short to be a ruling (error pages,
    stubs); partially-populated results are never returned.
    """
    text = html_to_text(html)
    if len(text) < min_content_length:
        return None

    paragraphs = html_to_paragraphs(html)
    description, classification = extract_description_and_classification(paragraphs, text)

    return ExtractedRuling(
        hts_codes=extract_hts_codes(text),
        issue_date=extract_issue_date(text),
        product_description=description,
        classification=classification,
        rationale=text,
        keywords=extract_keywords(text),
    )


def merge_terms(*groups: Iterable[str]) -> List[str]:
    """Concatenate term groups, keeping the first occurrence of each term."""
    seen = set()
    merged = []
    for group in groups:
        for term in group:
            if term not in seen:
                seen.add(term)
                merged.append(term)
    return merged
