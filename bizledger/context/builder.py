"""
Business Context Builder

DESIGN DECISION: The AI assistant never reads the expense stores. It is
given a block of plain text built here, deterministically, from the
user's knowledge entries and from reconciled spending totals. The text
is cached in the config store under `business_context_<user_id>` so the
chat side can read it without running a reconciliation pass.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from bizledger.models.expense import CategorySummary, KnowledgeEntry
from bizledger.services.storage import ConfigStoreInterface, business_context_key


logger = structlog.get_logger(__name__)

MAX_ENTRY_CHARS = 1000


class BusinessContextBuilder:
    """Builds and caches the AI-context text for one store."""

    def __init__(self, store: ConfigStoreInterface, max_entry_chars: int = MAX_ENTRY_CHARS):
        self._store = store
        self._max_entry_chars = max_entry_chars

    def build(
        self,
        entries: list[KnowledgeEntry],
        summaries: Optional[list[CategorySummary]] = None,
        period_label: str = "this month",
    ) -> str:
        """
        Render knowledge entries and category totals as prompt text.

        Entries are grouped by their category; categories with no spend
        are left out of the totals section.
        """
        sections = []

        if entries:
            by_category: dict[str, list[KnowledgeEntry]] = {}
            for entry in entries:
                by_category.setdefault(entry.category, []).append(entry)

            lines = ["## Business knowledge"]
            for category in sorted(by_category):
                lines.append(f"### {category.title()}")
                for entry in by_category[category]:
                    content = entry.content
                    if len(content) > self._max_entry_chars:
                        content = content[:self._max_entry_chars].rstrip() + "..."
                    tags = f" [{', '.join(entry.tags)}]" if entry.tags else ""
                    lines.append(f"- {entry.title}{tags}: {content}")
            sections.append("\n".join(lines))

        spent = [s for s in summaries or [] if s.count]
        if spent:
            total = sum((s.total for s in spent), Decimal("0"))
            lines = [f"## Spending {period_label}", f"Total: ${total:,.2f}"]
            for summary in sorted(spent, key=lambda s: s.total, reverse=True):
                lines.append(
                    f"- {summary.category}: ${summary.total:,.2f} "
                    f"({summary.count} expense{'s' if summary.count != 1 else ''})"
                )
            sections.append("\n".join(lines))

        return "\n\n".join(sections)

    async def refresh(
        self,
        user_id: str,
        entries: list[KnowledgeEntry],
        summaries: Optional[list[CategorySummary]] = None,
        period_label: str = "this month",
    ) -> str:
        """Rebuild the context text and store it."""
        text = self.build(entries, summaries, period_label)
        await self._store.set(
            business_context_key(user_id),
            {
                "text": text,
                "entry_count": len(entries),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info("business_context_refreshed", user_id=user_id,
                    entries=len(entries), length=len(text))
        return text

    async def get(self, user_id: str) -> Optional[str]:
        """Cached context text, or None if it was never built."""
        cached = await self._store.get(business_context_key(user_id))
        if isinstance(cached, dict):
            return cached.get("text")
        if isinstance(cached, str):
            return cached
        return None
