"""
Value detection and parsing heuristics shared by extraction strategies.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from bs4 import Tag

from extractor.document import HtmlDocument

# Field types the heuristics know how to score
SCORED_TYPES = ("price", "title", "revenue", "multiple")

MONEY_RE = re.compile(r"\$?\s*(\d[\d,]*(?:\.\d{2})?)")
MULTIPLE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*[xX×]?")

DOLLAR_AMOUNT_RE = re.compile(r"\$[\d,]+")
MULTIPLE_HINT_RE = re.compile(r"\d+(\.\d+)?x", re.IGNORECASE)
REVENUE_WORDS_RE = re.compile(r"revenue|income|earnings", re.IGNORECASE)
MONTHLY_RE = re.compile(r"month|/mo", re.IGNORECASE)
MULTIPLE_WORDS_RE = re.compile(r"multiple|valuation", re.IGNORECASE)
REVENUE_OR_MONTH_RE = re.compile(r"revenue|month", re.IGNORECASE)
DIGIT_RE = re.compile(r"\d")
CAPITALIZED_RE = re.compile(r"^[A-Z]")

# Label keyword table: first matching type wins
LABEL_KEYWORDS: dict[str, list[str]] = {
    "price": ["price", "asking", "cost", "value", "amount"],
    "revenue": ["revenue", "income", "earnings", "sales"],
    "profit": ["profit", "net", "margin"],
    "multiple": ["multiple", "valuation", "times"],
    "title": ["name", "title", "business", "company"],
}

HEADING_TAGS = {"h1", "h2", "h3"}


@dataclass
class ElementScore:
    """Per-type likelihood that an element holds a field value."""

    scores: dict[str, float] = field(default_factory=dict)
    total: float = 0.0
    likely_type: str | None = None


def _to_float(raw: str) -> float | None:
    cleaned = raw.replace(",", "")
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def extract_value_by_type(text: str | None, data_type: str) -> Any:
    """
    Pull a typed value out of element text.

    Monetary types yield floats, ``multiple`` a float ratio and
    everything else the trimmed text. Returns None when nothing usable
    is present.
    """
    if text is None:
        return None

    if data_type in ("price", "revenue", "profit"):
        match = MONEY_RE.search(text)
        return _to_float(match.group(1)) if match else None

    if data_type == "multiple":
        match = MULTIPLE_RE.search(text)
        return _to_float(match.group(1)) if match else None

    value = text.strip()
    return value or None


def parse_flexible_value(value: str) -> float | None:
    """Parse numbers written with ``k``/``M`` shorthand (``50k``, ``1.5M``)."""
    raw = value.strip().lower()
    if raw.endswith("k"):
        number = _to_float(raw[:-1])
        return number * 1_000 if number is not None else None
    if raw.endswith("m"):
        number = _to_float(raw[:-1])
        return number * 1_000_000 if number is not None else None
    return _to_float(raw)


def detect_data_type(text: str) -> str | None:
    """Classify a short piece of text into a field type."""
    if DOLLAR_AMOUNT_RE.search(text) and len(text) < 20:
        return "price"
    if MULTIPLE_HINT_RE.search(text):
        return "multiple"
    if REVENUE_OR_MONTH_RE.search(text) and DIGIT_RE.search(text):
        return "revenue"
    if 10 <= len(text) <= 100 and CAPITALIZED_RE.match(text):
        return "title"
    return None


def infer_data_type_from_label(label_text: str) -> str | None:
    """Map label text (already lowercased) to a field type."""
    for data_type, keywords in LABEL_KEYWORDS.items():
        if any(keyword in label_text for keyword in keywords):
            return data_type
    return None


def score_element(document: HtmlDocument, element: Tag, text: str) -> ElementScore:
    """Score an element's likelihood of holding each scored field type."""
    scores = {data_type: 0.0 for data_type in SCORED_TYPES}

    if DOLLAR_AMOUNT_RE.search(text):
        scores["price"] += 0.4
    if "price" in document.classes(element):
        scores["price"] += 0.3
    if document.font_size(element) > 20:
        scores["price"] += 0.2

    if 10 <= len(text) <= 100:
        scores["title"] += 0.2
    if CAPITALIZED_RE.match(text):
        scores["title"] += 0.2
    if element.name in HEADING_TAGS:
        scores["title"] += 0.4

    if REVENUE_WORDS_RE.search(text):
        scores["revenue"] += 0.3
    if MONTHLY_RE.search(text) and DIGIT_RE.search(text):
        scores["revenue"] += 0.4

    if MULTIPLE_HINT_RE.search(text):
        scores["multiple"] += 0.5
    if MULTIPLE_WORDS_RE.search(text):
        scores["multiple"] += 0.3

    result = ElementScore(scores=scores)
    for data_type, value in scores.items():
        if value > result.total:
            result.total = value
            result.likely_type = data_type
    return result
