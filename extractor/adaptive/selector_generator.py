"""
Selector generator for self-healing extraction.

Builds candidate CSS selectors for elements that look like they hold a
field value, generates variations of working selectors and validates
candidates against the current document.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime

from bs4 import Tag

from extractor.adaptive.values import (
    detect_data_type,
    extract_value_by_type,
    score_element,
)
from extractor.document import HtmlDocument
from extractor.models import utcnow
from extractor.utils.logging import ExtractorLogger

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][\w-]*$")


@dataclass
class SelectorCandidate:
    """A candidate CSS selector with confidence score."""

    selector: str
    data_type: str
    confidence: float
    value: object = None
    match_count: int = 0
    discovered_at: datetime = field(default_factory=utcnow)


class SelectorGenerator:
    """
    Generates and validates selectors for field values.

    Candidate elements are found with the same element scoring the
    adaptation strategies use. Each candidate gets several selectors
    (id, data attributes, classes, structural path) and each selector
    is kept only if it still resolves to a parseable value.
    """

    DATA_ATTRIBUTES = [
        "data-id", "data-type", "data-value", "data-listing",
        "data-price", "data-revenue", "data-metric",
        "data-testid", "itemprop", "role", "aria-label",
    ]

    def __init__(
        self,
        min_confidence: float = 0.3,
        max_candidates: int = 10,
        logger: ExtractorLogger | None = None,
    ):
        """
        Initialize the selector generator.

        Args:
            min_confidence: Minimum confidence to keep a candidate.
            max_candidates: Maximum elements examined per data type.
            logger: Logger instance.
        """
        self.min_confidence = min_confidence
        self.max_candidates = max_candidates
        self.logger = logger or ExtractorLogger("selector_generator")
        self._cache: dict[tuple[str, str], list[SelectorCandidate]] = {}

    def clear_cache(self) -> int:
        """Drop cached discoveries. Returns the number of entries removed."""
        count = len(self._cache)
        self._cache.clear()
        return count

    def selectors_for_element(self, element: Tag) -> list[str]:
        """Generate selectors that identify an element."""
        selectors: list[str] = []
        tag = element.name

        element_id = element.get("id")
        if isinstance(element_id, str) and _IDENTIFIER_RE.match(element_id):
            selectors.append(f"#{element_id}")

        for attr in self.DATA_ATTRIBUTES:
            value = element.get(attr)
            if isinstance(value, str) and value and '"' not in value:
                selectors.append(f'{tag}[{attr}="{value}"]')

        classes = [c for c in element.get("class", []) if _IDENTIFIER_RE.match(c)]
        if classes:
            selectors.append(f"{tag}.{'.'.join(classes)}")
            selectors.extend(f".{c}" for c in classes)

        path = self._structural_path(element)
        if path:
            selectors.append(path)

        return list(dict.fromkeys(selectors))

    def generate_variations(self, selector: str, max_variations: int = 10) -> list[str]:
        """Generate simpler, more general and positional variations of a selector."""
        variations = [selector]

        parts = selector.split()
        if len(parts) > 1:
            variations.append(parts[-1])

        general = re.sub(r"\.[\w-]+", "", selector).strip()
        if general and general != selector:
            variations.append(general)

        variations.append(
            re.sub(r"\.([\w-]+)", lambda m: f'[class*="{m.group(1)}"]', selector, count=1)
        )

        if ":" not in selector:
            variations.append(f"{selector}:first-of-type")
            variations.append(f"{selector}:last-of-type")

        if " > " in selector:
            variations.append(selector.replace(" > ", " "))
        elif " " in selector:
            variations.append(selector.replace(" ", " > ", 1))
        else:
            variations.append(f'[class*="listing"] {selector}')

        unique = [v for v in dict.fromkeys(variations) if v]
        return unique[:max_variations]

    def discover(self, document: HtmlDocument, data_type: str) -> list[SelectorCandidate]:
        """
        Discover working selectors for a data type on a document.

        Args:
            document: Document to analyze.
            data_type: Field type to find (price, title, ...).

        Returns:
            Candidates sorted by confidence, best first.
        """
        cache_key = (document.url, data_type)
        if document.url and cache_key in self._cache:
            return self._cache[cache_key]

        found: dict[str, SelectorCandidate] = {}
        for element, element_score in self._candidate_elements(document, data_type):
            for selector in self.selectors_for_element(element):
                if selector in found:
                    continue
                candidate = self.validate(document, selector, data_type, element_score)
                if candidate and candidate.confidence >= self.min_confidence:
                    found[selector] = candidate

        candidates = sorted(found.values(), key=lambda c: c.confidence, reverse=True)

        self.logger.debug(
            "Discovered selectors",
            data_type=data_type,
            candidates=len(candidates),
            best=candidates[0].selector if candidates else None,
        )

        if document.url:
            self._cache[cache_key] = candidates
        return candidates

    def validate(
        self,
        document: HtmlDocument,
        selector: str,
        data_type: str,
        base_confidence: float = 1.0,
    ) -> SelectorCandidate | None:
        """Check that a selector resolves to a value of the given type."""
        try:
            elements = document.select(selector)
        except Exception:
            return None
        if not elements:
            return None

        value = extract_value_by_type(document.text(elements[0]), data_type)
        if value is None:
            return None

        # Unique selectors are worth more than ambiguous ones
        if len(elements) == 1:
            confidence = base_confidence
        elif len(elements) <= 3:
            confidence = base_confidence * 0.9
        else:
            confidence = base_confidence * 0.7

        return SelectorCandidate(
            selector=selector,
            data_type=data_type,
            confidence=confidence,
            value=value,
            match_count=len(elements),
        )

    def _candidate_elements(
        self,
        document: HtmlDocument,
        data_type: str,
    ) -> list[tuple[Tag, float]]:
        """Elements likely to hold the data type, with their scores."""
        scored: list[tuple[Tag, float]] = []
        for element in document.root.find_all(True):
            if len(document.children(element)) > 3:
                continue
            text = document.text(element)
            if not text:
                continue
            element_score = score_element(document, element, text)
            if element_score.likely_type == data_type and element_score.total > 0.5:
                scored.append((element, element_score.total))
            elif detect_data_type(text) == data_type:
                scored.append((element, 0.5))

        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[: self.max_candidates]

    def _structural_path(self, element: Tag, depth: int = 4) -> str:
        """Build a ``tag:nth-of-type(n)`` path up to a few ancestors deep."""
        segments = []
        node: Tag | None = element
        while node is not None and node.name not in ("html", "[document]") and len(segments) < depth:
            parent = node.parent if isinstance(node.parent, Tag) else None
            if parent is None:
                break
            same_tag = parent.find_all(node.name, recursive=False)
            if len(same_tag) > 1:
                index = next(i for i, sibling in enumerate(same_tag, 1) if sibling is node)
                segments.append(f"{node.name}:nth-of-type({index})")
            else:
                segments.append(node.name)
            if node.name == "body":
                break
            node = parent
        return " > ".join(reversed(segments))
