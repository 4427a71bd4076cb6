"""Tests for the category registry and normalizer."""

import asyncio

import pytest

from bizledger.audit import AuditLogger
from bizledger.models.audit import AuditEventType
from bizledger.reconciliation.categories import (
    DEFAULT_CATEGORIES,
    CategoryNormalizer,
    CategoryRegistry,
    match_category,
    normalize_display_name,
)
from bizledger.services.storage import InMemoryConfigStore, JsonlAuditStorage


def make_normalizer(store=None, user_id="u1", defaults=None, audit_logger=None):
    store = store if store is not None else InMemoryConfigStore()
    registry = CategoryRegistry(user_id, store, defaults=defaults)
    return CategoryNormalizer(registry, audit_logger=audit_logger)


class TestMatching:
    """Tests for the match precedence."""

    def test_exact_case_insensitive(self):
        """Test that an exact match returns the stored spelling."""
        assert match_category("office supplies", DEFAULT_CATEGORIES) == "Office Supplies"

    def test_synonym_requires_target_in_set(self):
        """Test that a synonym only maps onto an existing category."""
        assert match_category("restaurant", DEFAULT_CATEGORIES) == "Meals"
        assert match_category("restaurant", ["Travel", "Other"]) is None

    def test_compact_comparison(self):
        """Test the spaces-and-ampersand comparison."""
        assert match_category("OfficeSupplies", DEFAULT_CATEGORIES) == "Office Supplies"
        assert match_category("Food & Drink", ["Food Drink", "Other"]) == "Food Drink"

    def test_display_name_normalization(self):
        """Test whitespace collapsing."""
        assert normalize_display_name("  Pet   Care ") == "Pet Care"
        assert normalize_display_name(None) == ""


class TestCategoryNormalizer:
    """Tests for CategoryNormalizer."""

    def test_empty_input_is_other(self):
        """Test the fallback for empty labels."""
        normalizer = make_normalizer()
        for raw in (None, "", "   "):
            assert asyncio.run(normalizer.normalize(raw)) == "Other"

    def test_synonym_and_exact(self):
        """Test that known labels resolve without creating anything."""
        store = InMemoryConfigStore()
        normalizer = make_normalizer(store)

        async def scenario():
            return [
                await normalizer.normalize("food"),
                await normalizer.normalize("MEALS"),
                await normalizer.normalize("hotel"),
            ]

        assert asyncio.run(scenario()) == ["Meals", "Meals", "Travel"]
        assert asyncio.run(store.get("categories_u1")) is None

    def test_new_category_learned_before_other(self):
        """Test that an unseen label becomes a persisted category."""
        store = InMemoryConfigStore()
        normalizer = make_normalizer(store)

        assert asyncio.run(normalizer.normalize("  Pet   Care ")) == "Pet Care"

        stored = asyncio.run(store.get("categories_u1"))
        assert stored[-2:] == ["Pet Care", "Other"]
        assert normalizer.registry.names == stored

    def test_idempotent(self):
        """Test that normalizing a canonical name returns it unchanged."""
        normalizer = make_normalizer()

        async def scenario():
            first = await normalizer.normalize("Pet Care")
            second = await normalizer.normalize(first)
            third = await normalizer.normalize("pet care")
            return first, second, third

        assert asyncio.run(scenario()) == ("Pet Care", "Pet Care", "Pet Care")

    def test_concurrent_normalization_creates_once(self):
        """Test that racing saves of the same label give one category."""
        store = InMemoryConfigStore()
        normalizer = make_normalizer(store)

        async def scenario():
            return await asyncio.gather(
                normalizer.normalize("Pet Care"),
                normalizer.normalize("pet care"),
                normalizer.normalize("PET CARE"),
            )

        assert asyncio.run(scenario()) == ["Pet Care", "Pet Care", "Pet Care"]
        stored = asyncio.run(store.get("categories_u1"))
        assert [n.lower() for n in stored].count("pet care") == 1

    def test_two_sessions_share_the_store(self):
        """Test that the stored list is re-checked before inserting."""
        store = InMemoryConfigStore()
        first = make_normalizer(store)
        second = make_normalizer(store)

        async def scenario():
            await second.registry.load()
            await first.normalize("Pet Care")
            return await second.normalize("pet care")

        assert asyncio.run(scenario()) == "Pet Care"
        stored = asyncio.run(store.get("categories_u1"))
        assert [n.lower() for n in stored].count("pet care") == 1

    def test_users_are_isolated(self):
        """Test that categories are per user."""
        store = InMemoryConfigStore()
        alice = make_normalizer(store, user_id="alice")
        bob = make_normalizer(store, user_id="bob")

        asyncio.run(alice.normalize("Pet Care"))
        assert "Pet Care" not in asyncio.run(bob.registry.load())

    def test_stored_list_cleaned_on_load(self):
        """Test that stored duplicates are dropped and Other kept last."""
        store = InMemoryConfigStore({"categories_u1": ["Other", "Travel", "travel", " Pet  Care"]})
        registry = CategoryRegistry("u1", store)
        assert asyncio.run(registry.load()) == ["Travel", "Pet Care", "Other"]

    def test_persistence_failure_non_strict(self, failing_config_store):
        """Test that a failed save still displays the attempted name."""
        normalizer = make_normalizer(failing_config_store)
        assert asyncio.run(normalizer.normalize("Pet Care")) == "Pet Care"
        assert "Pet Care" not in normalizer.registry.names

    def test_persistence_failure_strict(self, failing_config_store):
        """Test that strict callers get Other when the save fails."""
        normalizer = make_normalizer(failing_config_store)
        assert asyncio.run(normalizer.normalize("Pet Care", strict=True)) == "Other"

    def test_events_audited(self, tmp_path, failing_config_store):
        """Test that learned and failed categories reach the audit log."""
        storage = JsonlAuditStorage(tmp_path / "audit.jsonl")
        audit_logger = AuditLogger(storage)

        asyncio.run(make_normalizer(audit_logger=audit_logger).normalize("Pet Care"))
        asyncio.run(make_normalizer(failing_config_store, audit_logger=audit_logger).normalize("Gifts"))

        events = asyncio.run(storage.get_recent_events())
        assert [e.event_type for e in events] == [
            AuditEventType.CATEGORY_PERSISTENCE_FAILED,
            AuditEventType.CATEGORY_CREATED,
        ]
        assert events[1].entity_id == "Pet Care"


@pytest.mark.parametrize("raw,expected", [
    ("groceries", "Meals"),
    ("Flights", "Travel"),
    ("saas", "Software"),
    ("misc", "Other"),
    ("Professional Services", "Professional Services"),
])
def test_known_labels(raw, expected):
    """Test a sample of the synonym table."""
    assert asyncio.run(make_normalizer().normalize(raw)) == expected
