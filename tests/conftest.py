"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import fakeredis.aioredis
import pytest
import pytest_asyncio

from extractor.config import (
    AdaptationConfig,
    AdaptationMode,
    HealingConfig,
    PatternMemoryConfig,
)
from extractor.document import HtmlDocument
from extractor.memory.pattern_memory import PatternMemory
from extractor.memory.store import JSONFileStore


# =============================================================================
# Mock Redis
# =============================================================================


@pytest_asyncio.fixture
async def mock_redis() -> AsyncGenerator[Any, None]:
    """Provide an in-process Redis client for testing."""
    redis = fakeredis.aioredis.FakeRedis()
    yield redis
    await redis.aclose()


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def memory_config(tmp_path: Path) -> PatternMemoryConfig:
    """Pattern memory config writing under a temporary directory."""
    return PatternMemoryConfig(
        path=str(tmp_path / "pattern-memory.json"),
        flush_every=1000,
        flush_interval_seconds=3600,
    )


@pytest.fixture
def adaptation_config() -> AdaptationConfig:
    return AdaptationConfig(mode=AdaptationMode.AGGRESSIVE)


@pytest.fixture
def healing_config(tmp_path: Path) -> HealingConfig:
    """Healing config without delays."""
    return HealingConfig(
        auto_recovery_delay=0,
        strategy_timeout=5,
        data_dir=str(tmp_path / "data"),
    )


@pytest.fixture
def memory(memory_config: PatternMemoryConfig) -> PatternMemory:
    """Empty pattern memory backed by a temporary JSON file."""
    return PatternMemory(memory_config, store=JSONFileStore(memory_config.path))


# =============================================================================
# Sample Documents
# =============================================================================


@pytest.fixture
def price_html() -> str:
    """Listing with a prominent price and no other amounts above $100."""
    return """
<!DOCTYPE html>
<html>
<head><title>Listing 1234</title></head>
<body>
    <div class="listing">
        <p>Established store, 3 years old</p>
        <span style="font-size: 24px; font-weight: bold">$45,000</span>
        <p>Shipping fee $25</p>
    </div>
</body>
</html>
"""


@pytest.fixture
def price_document(price_html: str) -> HtmlDocument:
    return HtmlDocument(price_html, url="https://marketplace.example/listing/1234")


@pytest.fixture
def listing_html() -> str:
    """Full listing page with price, title, revenue and multiple."""
    return """
<!DOCTYPE html>
<html>
<head>
    <title>Profitable Pet Supplies Store</title>
    <meta property="og:title" content="Profitable Pet Supplies Store">
</head>
<body>
    <header><nav><a href="/">Home</a></nav></header>
    <main>
        <h1>Profitable Pet Supplies Store</h1>
        <div class="summary">
            <div class="row"><dt>Asking Price</dt><dd>$120,000</dd></div>
            <div class="row"><dt>Monthly Revenue</dt><dd>$8,500 / month</dd></div>
            <div class="row"><dt>Multiple</dt><dd>3.2x</dd></div>
        </div>
        <span itemprop="price" content="120000">$120,000</span>
        <p>This business has grown steadily since launch.</p>
    </main>
</body>
</html>
"""


@pytest.fixture
def listing_document(listing_html: str) -> HtmlDocument:
    return HtmlDocument(listing_html, url="https://marketplace.example/listing/42")


@pytest.fixture
def empty_html() -> str:
    return "<html><body><p>Nothing here</p></body></html>"
