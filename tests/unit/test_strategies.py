"""
Tests for the individual extraction strategies.
"""

import pytest

from extractor.adaptive.strategies import (
    ContextExpansionStrategy,
    DeepScanStrategy,
    FuzzyMatchingStrategy,
    HeadingDetectionStrategy,
    PatternMutationStrategy,
    PriceSpecificScanStrategy,
    SelectorRefinementStrategy,
    build_strategies,
    get_strategy_class,
)
from extractor.document import HtmlDocument
from extractor.exceptions import UnknownStrategyError
from extractor.models import StrategyType


class TestPriceSpecificScan:
    """Tests for the visual-prominence price scan."""

    @pytest.mark.asyncio
    async def test_prominent_price_wins(self, price_document: HtmlDocument) -> None:
        results = await PriceSpecificScanStrategy().execute(price_document)

        price = results["price"]
        assert price.value == 45000
        assert price.confidence == 85
        assert price.method == "price-specific-scan"

    def test_larger_font_preferred(self) -> None:
        document = HtmlDocument(
            """
            <body>
                <span style="font-size: 14px">$2,500</span>
                <span style="font-size: 28px">$90,000</span>
            </body>
            """
        )
        assert PriceSpecificScanStrategy().extract(document)["price"].value == 90000

    def test_bold_breaks_size_tie(self) -> None:
        document = HtmlDocument(
            """
            <body>
                <span>$2,500</span>
                <strong>$7,800</strong>
            </body>
            """
        )
        assert PriceSpecificScanStrategy().extract(document)["price"].value == 7800

    def test_out_of_range_ignored(self) -> None:
        document = HtmlDocument("<body><span>$50</span><span>$99,000,000</span></body>")
        assert PriceSpecificScanStrategy().extract(document) == {}


class TestHeadingDetection:
    @pytest.mark.asyncio
    async def test_title_tag_ranked_first(self, listing_document: HtmlDocument) -> None:
        results = await HeadingDetectionStrategy().execute(listing_document)

        assert results["title"].value == "Profitable Pet Supplies Store"
        assert results["title"].method == "heading-detection"

    def test_length_bounds(self) -> None:
        document = HtmlDocument(
            "<html><body><h1>Short</h1><h2>A Perfectly Reasonable Title</h2></body></html>"
        )
        assert HeadingDetectionStrategy().extract(document)["title"].value == (
            "A Perfectly Reasonable Title"
        )


class TestSelectorRefinement:
    def test_semantic_attributes(self, listing_document: HtmlDocument) -> None:
        results = SelectorRefinementStrategy().extract(listing_document)

        assert results["price"].value == 120000
        assert results["price"].selector == '[itemprop="price"]'
        assert results["title"].value == "Profitable Pet Supplies Store"
        assert "revenue" not in results

    def test_data_attributes(self) -> None:
        document = HtmlDocument(
            '<body><div data-revenue="$12,000">x</div><div data-multiple="2.8x">y</div></body>'
        )
        results = SelectorRefinementStrategy().extract(document)

        assert results["revenue"].value == 12000
        assert results["multiple"].value == 2.8


class TestContextExpansion:
    def test_label_value_pairs(self, listing_document: HtmlDocument) -> None:
        results = ContextExpansionStrategy().extract(listing_document)

        assert results["price"].value == 120000
        assert results["price"].label == "asking price"
        assert results["revenue"].value == 8500
        assert results["multiple"].value == 3.2
        assert all(f.confidence == 75 for f in results.values())

    def test_table_row(self) -> None:
        document = HtmlDocument(
            "<table><tr><th>Revenue</th><td>$4,200</td></tr></table>"
        )
        assert ContextExpansionStrategy().extract(document)["revenue"].value == 4200


class TestFuzzyMatching:
    def test_shorthand_values(self) -> None:
        document = HtmlDocument("<body><p>Asking $50k, earning 4k/month at 2.5x</p></body>")
        results = FuzzyMatchingStrategy().extract(document)

        assert results["price"].value == 50000
        assert results["revenue"].value == 4000
        assert results["multiple"].value == 2.5

    def test_millions(self) -> None:
        document = HtmlDocument("<body><p>Price: $1.5M</p></body>")
        assert FuzzyMatchingStrategy().extract(document)["price"].value == 1_500_000


class TestDeepScan:
    def test_scores_price_candidate(self, price_document: HtmlDocument) -> None:
        results = DeepScanStrategy().extract(price_document)

        assert results["price"].value == 45000
        assert results["price"].confidence == 60
        assert results["price"].method == "deep-scan"


class TestPatternMutation:
    def test_mutated_selectors_distinct(self) -> None:
        selectors = PatternMutationStrategy().mutated_selectors()

        assert len(selectors) == len(set(selectors))
        assert '[class*="price"]' in selectors
        assert ".price:first-child" in selectors
        assert "span[data-value]" in selectors

    def test_finds_value_with_selector(self, listing_document: HtmlDocument) -> None:
        results = PatternMutationStrategy().extract(listing_document)

        assert results["price"].value == 120000
        assert results["price"].selector
        assert results["price"].method == "pattern-mutation"


class TestRegistry:
    @pytest.mark.asyncio
    async def test_all_strategies_empty_page(self, empty_html: str) -> None:
        document = HtmlDocument(empty_html)
        for strategy in build_strategies().values():
            assert await strategy.execute(document) == {}

    def test_lookup_by_name(self) -> None:
        assert get_strategy_class("fuzzy-matching") is FuzzyMatchingStrategy
        assert get_strategy_class(StrategyType.DEEP_SCAN) is DeepScanStrategy

    def test_unknown_name(self) -> None:
        with pytest.raises(UnknownStrategyError):
            get_strategy_class("telepathy")
