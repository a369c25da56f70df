"""
Queryable HTML document used by extraction strategies.

Wraps BeautifulSoup with the handful of capabilities strategies need:
selector queries, normalized text, attributes and a computed-style
approximation for font size and weight.
"""

import re
from typing import Iterator

from bs4 import BeautifulSoup, Tag

# Browser default font sizes in px (16px base)
DEFAULT_FONT_SIZES = {
    "h1": 32.0,
    "h2": 24.0,
    "h3": 18.72,
    "h4": 16.0,
    "h5": 13.28,
    "h6": 10.72,
    "small": 13.33,
}

BOLD_TAGS = {"b", "strong", "th", "h1", "h2", "h3", "h4", "h5", "h6"}

NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]

BASE_FONT_SIZE = 16.0

_SIZE_RE = re.compile(r"^\s*([\d.]+)\s*(px|pt|em|rem|%)?\s*$", re.IGNORECASE)


class HtmlDocument:
    """
    BeautifulSoup-backed document.

    Script and style content is dropped on load so that text queries
    only see rendered content.
    """

    def __init__(self, html: str, url: str = "", parser: str = "lxml"):
        self.url = url
        self.soup = BeautifulSoup(html, parser)
        for tag in self.soup.find_all(NON_CONTENT_TAGS):
            tag.decompose()

    @property
    def root(self) -> Tag:
        """The body element, or the whole document when there is none."""
        return self.soup.body or self.soup

    def select(self, selector: str, scope: Tag | None = None) -> list[Tag]:
        """Run a CSS selector. Invalid selectors raise soupsieve errors."""
        return (scope or self.soup).select(selector)

    def select_one(self, selector: str, scope: Tag | None = None) -> Tag | None:
        """Return the first element matching a selector."""
        return (scope or self.soup).select_one(selector)

    def elements(self) -> Iterator[Tag]:
        """Iterate every element under the body in document order."""
        root = self.root
        if isinstance(root, Tag) and root.name != "[document]":
            yield root
        yield from root.find_all(True)

    def children(self, element: Tag) -> list[Tag]:
        """Direct element children."""
        return element.find_all(True, recursive=False)

    def text(self, element: Tag) -> str:
        """Whitespace-normalized text content of an element."""
        return " ".join(element.get_text(" ").split())

    def attr(self, element: Tag, name: str) -> str | None:
        """Attribute value, with multi-valued attributes joined by spaces."""
        value = element.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def classes(self, element: Tag) -> str:
        """Class attribute as a single string."""
        return self.attr(element, "class") or ""

    def body_text(self) -> str:
        """Whitespace-normalized text of the whole body."""
        return self.text(self.root)

    def style(self, element: Tag) -> dict[str, str]:
        """Parse the inline style declarations of an element."""
        declarations: dict[str, str] = {}
        raw = self.attr(element, "style") or ""
        for part in raw.split(";"):
            if ":" not in part:
                continue
            name, value = part.split(":", 1)
            declarations[name.strip().lower()] = value.strip().lower()
        return declarations

    def font_size(self, element: Tag) -> float:
        """Resolved font size in px, following inheritance."""
        chain = [element] + [p for p in element.parents if isinstance(p, Tag)]
        size = BASE_FONT_SIZE
        # Resolve from the outermost ancestor inwards so relative units compose
        for node in reversed(chain):
            declared = self.style(node).get("font-size")
            if declared:
                size = self._resolve_size(declared, size)
            elif node.name in DEFAULT_FONT_SIZES:
                size = DEFAULT_FONT_SIZES[node.name]
        return size

    def font_weight(self, element: Tag) -> str:
        """Resolved font weight, normalized to 'bold' or 'normal'."""
        for node in [element] + [p for p in element.parents if isinstance(p, Tag)]:
            declared = self.style(node).get("font-weight")
            if declared:
                return "bold" if self._is_bold_value(declared) else "normal"
            if node.name in BOLD_TAGS:
                return "bold"
        return "normal"

    def is_bold(self, element: Tag) -> bool:
        return self.font_weight(element) == "bold"

    @staticmethod
    def _is_bold_value(value: str) -> bool:
        if value in ("bold", "bolder"):
            return True
        try:
            return int(value) >= 600
        except ValueError:
            return False

    @staticmethod
    def _resolve_size(declared: str, inherited: float) -> float:
        match = _SIZE_RE.match(declared)
        if not match:
            return inherited
        number = float(match.group(1))
        unit = (match.group(2) or "px").lower()
        if unit == "pt":
            return number * 4 / 3
        if unit == "em":
            return number * inherited
        if unit == "rem":
            return number * BASE_FONT_SIZE
        if unit == "%":
            return number / 100 * inherited
        return number
