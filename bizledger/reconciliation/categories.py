"""
Category Normalizer

Maps free-text category labels (from the classifier or typed by a user)
onto the user's canonical category set, learning new categories on
demand.

Precedence, strictly in this order:
1. Exact case-insensitive match against the set
2. Synonym table, only when the mapped name exists in the set
3. Comparison with spaces and "&" removed
4. Otherwise the label becomes a new canonical category
5. Empty input, or a failed save, gives "Other"

DESIGN DECISION: The category set is not global state. A CategoryRegistry
is created per user and injected into the normalizer. Every mutation goes
through the config store's critical section and re-checks existence
against the stored list right before inserting, so normalizing the same
unseen label twice never creates two categories.

One synonym table serves both ingestion and receipt upload.
"""

from typing import Any, Iterable, Optional

import structlog

from bizledger.services.storage import ConfigStoreInterface, StorageError, categories_key


logger = structlog.get_logger(__name__)

FALLBACK_CATEGORY = "Other"

DEFAULT_CATEGORIES = [
    "Meals",
    "Entertainment",
    "Travel",
    "Office Supplies",
    "Marketing",
    "Software",
    "Equipment",
    "Professional Services",
    "Utilities",
    FALLBACK_CATEGORY,
]

# Lower-cased raw label -> canonical name
CATEGORY_SYNONYMS = {
    # Meals
    "food": "Meals",
    "food & dining": "Meals",
    "food and dining": "Meals",
    "dining": "Meals",
    "restaurant": "Meals",
    "restaurants": "Meals",
    "grocery": "Meals",
    "groceries": "Meals",
    "lunch": "Meals",
    "dinner": "Meals",
    "breakfast": "Meals",
    "coffee": "Meals",
    "meal": "Meals",
    "meals & entertainment": "Meals",
    # Entertainment
    "movie": "Entertainment",
    "movies": "Entertainment",
    "concert": "Entertainment",
    "concerts": "Entertainment",
    # Travel
    "hotel": "Travel",
    "hotels": "Travel",
    "flight": "Travel",
    "flights": "Travel",
    "airfare": "Travel",
    "taxi": "Travel",
    "lodging": "Travel",
    "transportation": "Travel",
    # Office Supplies
    "supplies": "Office Supplies",
    "office": "Office Supplies",
    "office_supplies": "Office Supplies",
    "stationery": "Office Supplies",
    # Software
    "subscription": "Software",
    "subscriptions": "Software",
    "technology": "Software",
    "saas": "Software",
    # Marketing
    "advertising": "Marketing",
    "ads": "Marketing",
    "promotion": "Marketing",
    # Equipment
    "hardware": "Equipment",
    # Professional Services
    "professional_services": "Professional Services",
    "consulting": "Professional Services",
    "legal": "Professional Services",
    "accounting": "Professional Services",
    # Utilities
    "utility": "Utilities",
    "internet": "Utilities",
    "phone": "Utilities",
    # Other
    "misc": FALLBACK_CATEGORY,
    "miscellaneous": FALLBACK_CATEGORY,
    "general": FALLBACK_CATEGORY,
}


class CategoryPersistenceError(Exception):
    """A new category could not be saved."""

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(message)


def normalize_display_name(raw: Any) -> str:
    """Trim and collapse internal whitespace. New categories are stored in this form."""
    if raw is None:
        return ""
    return " ".join(str(raw).split())


def _compact(name: str) -> str:
    return name.lower().replace(" ", "").replace("&", "")


def _find(name: str, names: Iterable[str]) -> Optional[str]:
    lowered = name.lower()
    for candidate in names:
        if candidate.lower() == lowered:
            return candidate
    return None


def ensure_fallback_last(names: Iterable[Any]) -> list[str]:
    """
    Clean a stored list: display-normalize, drop case-insensitive repeats
    and blanks, and make "Other" the single terminal entry.
    """
    cleaned = []
    seen = set()
    for raw in names:
        name = normalize_display_name(raw)
        key = name.lower()
        if not name or key in seen or key == FALLBACK_CATEGORY.lower():
            continue
        seen.add(key)
        cleaned.append(name)
    cleaned.append(FALLBACK_CATEGORY)
    return cleaned


def match_category(name: str, names: list[str]) -> Optional[str]:
    """Steps 1-3 of the precedence. Returns the canonical spelling or None."""
    exact = _find(name, names)
    if exact:
        return exact

    target = CATEGORY_SYNONYMS.get(name.lower())
    if target:
        mapped = _find(target, names)
        if mapped:
            return mapped

    compact = _compact(name)
    if compact:
        for candidate in names:
            if _compact(candidate) == compact:
                return candidate

    return None


class CategoryRegistry:
    """
    One user's canonical category set.

    Loaded from the config store (key `categories_<user_id>`) or from the
    default list, and appended to as new labels are learned. Categories
    are never removed during a session.
    """

    def __init__(
        self,
        user_id: str,
        store: ConfigStoreInterface,
        defaults: Optional[list[str]] = None,
    ):
        self.user_id = user_id
        self._store = store
        self._defaults = ensure_fallback_last(defaults or DEFAULT_CATEGORIES)
        self._names: Optional[list[str]] = None

    @property
    def key(self) -> str:
        return categories_key(self.user_id)

    async def load(self) -> list[str]:
        """Load once per session; later calls return the in-memory set."""
        if self._names is None:
            try:
                stored = await self._store.get(self.key)
            except StorageError as e:
                logger.warning("category_load_failed", user_id=self.user_id, error=str(e))
                stored = None

            if isinstance(stored, list) and stored:
                self._names = ensure_fallback_last(stored)
            else:
                self._names = list(self._defaults)
        return list(self._names)

    @property
    def names(self) -> list[str]:
        return list(self._names) if self._names is not None else list(self._defaults)

    async def add(self, name: str) -> tuple[str, bool]:
        """
        Insert a category just before "Other" and persist it.

        Existence is re-checked against the stored list inside the store's
        critical section. The in-memory set is only replaced once the
        write succeeded.

        Returns:
            (canonical_name, created)

        Raises:
            CategoryPersistenceError: If the store write fails
        """
        name = normalize_display_name(name)
        outcome = {}

        def _insert(current):
            base = current if isinstance(current, list) and current else self.names
            names = ensure_fallback_last(base)
            for learned in self.names:
                if not _find(learned, names):
                    names.insert(len(names) - 1, learned)
            existing = _find(name, names)
            if existing:
                outcome["name"], outcome["created"] = existing, False
                return names
            outcome["name"], outcome["created"] = name, True
            return names[:-1] + [name, FALLBACK_CATEGORY]

        try:
            stored = await self._store.update(self.key, _insert, default=None)
        except StorageError as e:
            raise CategoryPersistenceError(name, str(e)) from e

        self._names = ensure_fallback_last(stored)
        return outcome["name"], outcome["created"]


class CategoryNormalizer:
    """
    Resolves raw labels against a CategoryRegistry.

    Args:
        registry: The user's category set
        audit_logger: Optional, receives category_created / persistence failures
    """

    def __init__(self, registry: CategoryRegistry, audit_logger=None):
        self._registry = registry
        self._audit_logger = audit_logger

    @property
    def registry(self) -> CategoryRegistry:
        return self._registry

    async def normalize(self, raw: Any, strict: bool = False) -> str:
        """
        Map a raw label onto a canonical category.

        Args:
            raw: Label from the classifier, a stored row, or the user
            strict: When True, a failed save gives "Other" instead of
                    the attempted name. Use for callers that need a
                    guaranteed canonical result.
        """
        name = normalize_display_name(raw)
        if not name:
            return FALLBACK_CATEGORY

        names = await self._registry.load()
        matched = match_category(name, names)
        if matched:
            return matched

        try:
            canonical, created = await self._registry.add(name)
        except CategoryPersistenceError as e:
            logger.warning(
                "category_persistence_failed",
                user_id=self._registry.user_id,
                category=name,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_category_persistence_failed(
                    user_id=self._registry.user_id,
                    category=name,
                    error_message=str(e),
                )
            return FALLBACK_CATEGORY if strict else name

        if created:
            logger.info("category_created", user_id=self._registry.user_id,
                        category=canonical, raw_label=str(raw))
            if self._audit_logger:
                await self._audit_logger.log_category_created(
                    user_id=self._registry.user_id,
                    category=canonical,
                    raw_label=str(raw),
                )
        return canonical
