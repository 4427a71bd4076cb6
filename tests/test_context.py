"""Tests for the AI business-context builder."""

import asyncio
from decimal import Decimal

from bizledger.context import BusinessContextBuilder
from bizledger.models.expense import CategorySummary, KnowledgeEntry
from bizledger.services.storage import InMemoryConfigStore


ENTRIES = [
    KnowledgeEntry(title="Hours", content="Open 9-5 weekdays", category="operations"),
    KnowledgeEntry(title="Rent", content="Lease renews in March", category="finance", tags=["lease"]),
]


class TestBusinessContextBuilder:
    """Tests for BusinessContextBuilder."""

    def test_build_sections(self):
        """Test knowledge and spending sections."""
        text = BusinessContextBuilder(InMemoryConfigStore()).build(
            ENTRIES,
            [
                CategorySummary(category="Meals", total=Decimal("40.00"), count=2),
                CategorySummary(category="Travel", total=Decimal("0.00"), count=0),
            ],
        )
        assert "## Business knowledge" in text
        assert text.index("### Finance") < text.index("### Operations")
        assert "- Rent [lease]: Lease renews in March" in text
        assert "Total: $40.00" in text
        assert "- Meals: $40.00 (2 expenses)" in text
        assert "Travel" not in text

    def test_long_entries_truncated(self):
        """Test the per-entry character limit."""
        entry = KnowledgeEntry(title="Notes", content="x" * 50)
        text = BusinessContextBuilder(InMemoryConfigStore(), max_entry_chars=10).build([entry])
        assert "x" * 10 + "..." in text
        assert "x" * 11 not in text

    def test_empty_input(self):
        """Test that nothing to say gives empty text."""
        assert BusinessContextBuilder(InMemoryConfigStore()).build([]) == ""

    def test_refresh_caches_text(self):
        """Test that refresh stores the text per user."""
        store = InMemoryConfigStore()
        builder = BusinessContextBuilder(store)

        text = asyncio.run(builder.refresh("u1", ENTRIES))

        assert asyncio.run(builder.get("u1")) == text
        assert asyncio.run(builder.get("u2")) is None
        cached = asyncio.run(store.get("business_context_u1"))
        assert cached["entry_count"] == 2
