"""
Extraction strategies used by the adaptation engine.

Each strategy is a self-contained heuristic that runs against a document
and returns whatever typed field values it can find, tagged with a
confidence and the strategy name as provenance.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from bs4 import Tag

from extractor.adaptive.values import (
    detect_data_type,
    extract_value_by_type,
    infer_data_type_from_label,
    parse_flexible_value,
    score_element,
)
from extractor.config import AdaptationConfig
from extractor.document import HtmlDocument
from extractor.exceptions import UnknownStrategyError
from extractor.models import ExtractedField, StrategyType

FieldMap = dict[str, ExtractedField]


class ExtractionStrategy(ABC):
    """Base class for adaptation strategies."""

    type: StrategyType
    confidence: int = 50

    def __init__(self, config: AdaptationConfig | None = None):
        self.config = config or AdaptationConfig()

    @property
    def name(self) -> str:
        return self.type.value

    async def execute(self, document: HtmlDocument) -> FieldMap:
        """
        Run the strategy against a document.

        Yields to the event loop first so strategies scheduled together
        interleave and can be abandoned by a plan timeout.
        """
        await asyncio.sleep(0)
        return self.extract(document)

    @abstractmethod
    def extract(self, document: HtmlDocument) -> FieldMap:
        """Synchronous extraction body."""

    def _field(self, value, text: str, confidence: int | None = None, **extra) -> ExtractedField:
        return ExtractedField(
            value=value,
            text=text,
            confidence=self.confidence if confidence is None else confidence,
            method=self.name,
            **extra,
        )


class DeepScanStrategy(ExtractionStrategy):
    """Score every leaf-like element and keep the best candidate per type."""

    type = StrategyType.DEEP_SCAN
    confidence = 80
    max_candidates = 10

    def extract(self, document: HtmlDocument) -> FieldMap:
        candidates = []
        for element in document.elements():
            if len(document.children(element)) > self.config.max_children:
                continue
            text = document.text(element)
            if not text:
                continue
            score = score_element(document, element, text)
            if score.total > self.config.candidate_threshold:
                candidates.append((score, text))

        candidates.sort(key=lambda c: c[0].total, reverse=True)

        results: FieldMap = {}
        for score, text in candidates[: self.max_candidates]:
            data_type = score.likely_type
            if not data_type or data_type in results:
                continue
            value = extract_value_by_type(text, data_type)
            if value is None:
                continue
            results[data_type] = self._field(value, text, round(score.total * 100))
        return results


def _strip_combinator(selector: str) -> str:
    return selector.replace(">", "", 1)


def _add_child_combinator(selector: str) -> str:
    return selector.replace(" ", " > ", 1)


def _class_to_attribute(selector: str) -> str:
    return re.sub(
        r"\.([^\s.#>\[:]+)",
        lambda m: f'[class*="{m.group(1)}"]',
        selector,
        count=1,
    )


def _drop_class(selector: str) -> str:
    return re.sub(r"\.[^\s]+", "", selector, count=1)


class PatternMutationStrategy(ExtractionStrategy):
    """Apply mechanical transformations to generic selectors."""

    type = StrategyType.PATTERN_MUTATION
    confidence = 70

    BASE_SELECTORS = [
        ".price", ".value", ".amount",
        '[class*="price"]', '[class*="value"]',
        "span", "div", "dd", "td",
    ]

    MUTATIONS: list[Callable[[str], str]] = [
        _strip_combinator,
        _add_child_combinator,
        _class_to_attribute,
        _drop_class,
        lambda s: s + "[data-value]",
        lambda s: s + "[data-price]",
        lambda s: s + ":first-child",
        lambda s: s + ":last-child",
        lambda s: s + ":nth-child(2)",
    ]

    max_matches = 20

    def mutated_selectors(self) -> list[str]:
        """All distinct mutated selectors in generation order."""
        seen: set[str] = set()
        selectors = []
        for base in self.BASE_SELECTORS:
            for mutate in self.MUTATIONS:
                mutated = mutate(base).strip()
                if mutated and mutated not in seen:
                    seen.add(mutated)
                    selectors.append(mutated)
        return selectors

    def extract(self, document: HtmlDocument) -> FieldMap:
        results: FieldMap = {}
        for selector in self.mutated_selectors():
            try:
                elements = document.select(selector)
            except Exception:
                continue
            if not 0 < len(elements) < self.max_matches:
                continue
            for element in elements:
                text = document.text(element)
                data_type = detect_data_type(text)
                if not data_type or data_type in results:
                    continue
                value = extract_value_by_type(text, data_type)
                if value is not None:
                    results[data_type] = self._field(value, text, selector=selector)
        return results


class ContextExpansionStrategy(ExtractionStrategy):
    """Find label-like elements and look for the value next to them."""

    type = StrategyType.CONTEXT_EXPANSION
    confidence = 75

    LABEL_SELECTOR = 'label, dt, th, strong, b, [class*="label"], [class*="key"]'

    def _value_candidates(self, document: HtmlDocument, label: Tag) -> list[Callable[[], list[Tag]]]:
        parent = label.parent if isinstance(label.parent, Tag) else None
        grandparent = parent.parent if parent is not None and isinstance(parent.parent, Tag) else None

        def next_sibling() -> list[Tag]:
            sibling = label.find_next_sibling()
            return [sibling] if sibling else []

        def sibling_elements() -> list[Tag]:
            if parent is None:
                return []
            return [e for e in parent.find_all(["span", "div"]) if e is not label]

        def parent_next() -> list[Tag]:
            if parent is None:
                return []
            sibling = parent.find_next_sibling()
            return [sibling] if sibling else []

        def same_row() -> list[Tag]:
            row = label.find_parent("tr")
            if row is None:
                return []
            own_cell = label if label.name == "td" else label.find_parent("td")
            return [cell for cell in row.find_all("td") if cell is not own_cell]

        def nearby_value_class() -> list[Tag]:
            if grandparent is None:
                return []
            return document.select('[class*="value"]', scope=grandparent)

        return [next_sibling, sibling_elements, parent_next, same_row, nearby_value_class]

    def extract(self, document: HtmlDocument) -> FieldMap:
        results: FieldMap = {}
        for label in document.select(self.LABEL_SELECTOR):
            label_text = document.text(label).lower()
            data_type = infer_data_type_from_label(label_text)
            if not data_type or data_type in results:
                continue

            for search in self._value_candidates(document, label):
                found = search()
                if not found:
                    continue
                text = document.text(found[0])
                value = extract_value_by_type(text, data_type)
                if value is not None:
                    results[data_type] = self._field(value, text, label=label_text)
                    break
        return results


class FuzzyMatchingStrategy(ExtractionStrategy):
    """Run field-specific regular expressions over the whole page text."""

    type = StrategyType.FUZZY_MATCHING
    confidence = 65

    PATTERNS: dict[str, list[re.Pattern]] = {
        "price": [
            re.compile(r"\$\s*(\d+(?:\.\d+)?[kKmM])\b"),
            re.compile(r"(?:^|\s)\$?\s*(\d{1,3}(?:,\d{3})*(?:\.\d{2})?)\s*(?:$|\s)"),
            re.compile(r"(?:USD)\s*(\d+(?:,\d{3})*)", re.IGNORECASE),
            re.compile(r"(\d{4,})\s*(?:dollars?|bucks?)", re.IGNORECASE),
        ],
        "revenue": [
            re.compile(r"\$?(\d+(?:\.\d+)?[kKmM]?)\s*(?:/\s*)?(?:month|mo\b)", re.IGNORECASE),
            re.compile(r"monthly.*?(\d+(?:,\d{3})*)", re.IGNORECASE),
            re.compile(r"revenue.*?(\d+(?:,\d{3})*)", re.IGNORECASE),
        ],
        "multiple": [
            re.compile(r"(\d+(?:\.\d+)?)\s*[xX×]"),
            re.compile(r"multiple.*?(\d+(?:\.\d+)?)", re.IGNORECASE),
        ],
    }

    def extract(self, document: HtmlDocument) -> FieldMap:
        results: FieldMap = {}
        page_text = document.body_text()

        for data_type, patterns in self.PATTERNS.items():
            for pattern in patterns:
                match = pattern.search(page_text)
                if not match or not match.group(1):
                    continue
                value = parse_flexible_value(match.group(1))
                if value is not None:
                    results[data_type] = self._field(value, match.group(0).strip())
                    break
        return results


@dataclass
class _PriceCandidate:
    value: float
    text: str
    size: float
    bold: bool


class PriceSpecificScanStrategy(ExtractionStrategy):
    """Pick the most visually prominent plausible price on the page."""

    type = StrategyType.PRICE_SPECIFIC_SCAN
    confidence = 85

    CURRENCY_CUES = ("$", "USD", "price")
    PRICE_RE = re.compile(r"\$?\s*(\d[\d,]*(?:\.\d{2})?)")

    def extract(self, document: HtmlDocument) -> FieldMap:
        candidates: list[_PriceCandidate] = []
        for element in document.root.find_all(True):
            if len(document.children(element)) > self.config.max_children:
                continue
            text = document.text(element)
            if not any(cue in text for cue in self.CURRENCY_CUES):
                continue
            match = self.PRICE_RE.search(text)
            if not match:
                continue
            value = extract_value_by_type(match.group(0), "price")
            if value is None or not self.config.min_price < value < self.config.max_price:
                continue
            candidates.append(
                _PriceCandidate(
                    value=value,
                    text=text,
                    size=document.font_size(element),
                    bold=document.is_bold(element),
                )
            )

        if not candidates:
            return {}

        candidates.sort(key=lambda c: (-c.size, not c.bold))
        best = candidates[0]
        return {"price": self._field(best.value, best.text)}


class HeadingDetectionStrategy(ExtractionStrategy):
    """Pick the top-ranked heading with a plausible title length."""

    type = StrategyType.HEADING_DETECTION
    confidence = 80

    SELECTOR = 'h1, h2, h3, h4, title, [class*="title"], [class*="heading"]'
    TAG_ORDER = {"title": 0, "h1": 1, "h2": 2, "h3": 3, "h4": 4}
    MIN_LENGTH = 10
    MAX_LENGTH = 150

    def extract(self, document: HtmlDocument) -> FieldMap:
        candidates = []
        for element in document.select(self.SELECTOR):
            text = document.text(element)
            if self.MIN_LENGTH <= len(text) <= self.MAX_LENGTH:
                order = self.TAG_ORDER.get(element.name, 10)
                candidates.append((order, -document.font_size(element), text))

        if not candidates:
            return {}

        candidates.sort(key=lambda c: (c[0], c[1]))
        text = candidates[0][2]
        return {"title": self._field(text, text)}


@dataclass(frozen=True)
class Refinement:
    selector: str
    data_type: str
    attribute: str | None = None


class SelectorRefinementStrategy(ExtractionStrategy):
    """Try semantically typed attribute selectors."""

    type = StrategyType.SELECTOR_REFINEMENT
    confidence = 85

    REFINEMENTS = [
        Refinement('[itemprop="price"]', "price"),
        Refinement('[property*="price"]', "price"),
        Refinement(".listing-price", "price"),
        Refinement('[data-test*="price"]', "price"),
        Refinement('[data-testid*="price"]', "price"),
        Refinement('[itemprop="name"]', "title"),
        Refinement('meta[property="og:title"]', "title", "content"),
        Refinement("[data-revenue]", "revenue", "data-revenue"),
        Refinement('[data-testid*="revenue"]', "revenue"),
        Refinement('.metric:-soup-contains("Revenue")', "revenue"),
        Refinement("[data-multiple]", "multiple", "data-multiple"),
    ]

    def extract(self, document: HtmlDocument) -> FieldMap:
        results: FieldMap = {}
        for refinement in self.REFINEMENTS:
            if refinement.data_type in results:
                continue
            try:
                element = document.select_one(refinement.selector)
            except Exception:
                continue
            if element is None:
                continue

            if refinement.attribute:
                raw = document.attr(element, refinement.attribute)
            elif element.name == "meta" or element.has_attr("content"):
                raw = document.attr(element, "content")
            else:
                raw = document.text(element)

            value = extract_value_by_type(raw, refinement.data_type)
            if value is not None:
                results[refinement.data_type] = self._field(
                    value, raw or "", selector=refinement.selector
                )
        return results


STRATEGY_CLASSES: dict[StrategyType, type[ExtractionStrategy]] = {
    StrategyType.DEEP_SCAN: DeepScanStrategy,
    StrategyType.PATTERN_MUTATION: PatternMutationStrategy,
    StrategyType.CONTEXT_EXPANSION: ContextExpansionStrategy,
    StrategyType.FUZZY_MATCHING: FuzzyMatchingStrategy,
    StrategyType.PRICE_SPECIFIC_SCAN: PriceSpecificScanStrategy,
    StrategyType.HEADING_DETECTION: HeadingDetectionStrategy,
    StrategyType.SELECTOR_REFINEMENT: SelectorRefinementStrategy,
}


def build_strategies(
    config: AdaptationConfig | None = None,
) -> dict[StrategyType, ExtractionStrategy]:
    """Instantiate one executor per strategy type."""
    return {
        strategy_type: cls(config)
        for strategy_type, cls in STRATEGY_CLASSES.items()
    }


def get_strategy_class(name: str | StrategyType) -> type[ExtractionStrategy]:
    """Look up a strategy class by name."""
    try:
        return STRATEGY_CLASSES[StrategyType(name)]
    except ValueError as e:
        raise UnknownStrategyError(str(name)) from e
