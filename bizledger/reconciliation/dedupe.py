"""
Deduplication Engine

Two phases, order-preserving except for removed records:

1. Exact-identifier phase: the first occurrence of each id wins.
2. Functional phase: for each surviving record R, its twins are the other
   survivors with |amount diff| < 0.01 and |timestamp diff| < 5 minutes.
   If R sits at the artifact hour (local 05:xx, produced by an upstream
   timestamp bug) and some twin does not, R is dropped. Every other
   cluster of twins is kept whole and reported as a possible duplicate.

DESIGN DECISION: The engine never guesses which of two ambiguous records
is authoritative. Dropping a legitimate expense is worse than showing a
duplicate the user can delete, so ambiguous clusters go to the
presentation layer as warnings.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from bizledger.config import ReconciliationSettings
from bizledger.models.expense import ExpenseRecord


logger = structlog.get_logger(__name__)


class DeduplicationReport(BaseModel):
    """What the engine kept and why it dropped the rest."""

    kept: list[ExpenseRecord] = Field(default_factory=list)
    exact_duplicate_ids: list[str] = Field(
        default_factory=list,
        description="Ids dropped because an earlier record had the same id"
    )
    artifact_ids: list[str] = Field(
        default_factory=list,
        description="Ids dropped as artifact-hour twins"
    )
    possible_duplicates: list[list[str]] = Field(
        default_factory=list,
        description="Clusters of kept ids that look like the same expense"
    )

    @property
    def dropped_ids(self) -> list[str]:
        return self.exact_duplicate_ids + self.artifact_ids

    @property
    def removed_count(self) -> int:
        return len(self.exact_duplicate_ids) + len(self.artifact_ids)


class DeduplicationEngine:
    """Removes exact and artifact-hour duplicates; reports the ambiguous rest."""

    def __init__(self, settings: ReconciliationSettings):
        self._tz = settings.tzinfo
        self._window = timedelta(minutes=settings.duplicate_window_minutes)
        self._tolerance = Decimal(settings.amount_tolerance)
        self._artifact_hour = settings.artifact_hour

    def hour_of(self, record) -> int:
        """Local hour of the record's timestamp."""
        return record.timestamp.astimezone(self._tz).hour

    def is_twin(self, a, b) -> bool:
        return (
            abs(a.amount - b.amount) < self._tolerance
            and abs(a.timestamp - b.timestamp) < self._window
        )

    def _twins(self, record, candidates: list) -> list:
        return [
            other for other in candidates
            if other is not record and self.is_twin(record, other)
        ]

    def _clusters(self, records: list) -> list[list[str]]:
        """Connected groups of twins among the kept records."""
        parent = list(range(len(records)))

        def root(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for i in range(len(records)):
            for j in range(i + 1, len(records)):
                if self.is_twin(records[i], records[j]):
                    parent[root(j)] = root(i)

        groups: dict[int, list[str]] = {}
        for i, record in enumerate(records):
            groups.setdefault(root(i), []).append(record.key)
        return [ids for ids in groups.values() if len(ids) > 1]

    def run(self, records: Iterable) -> DeduplicationReport:
        report = DeduplicationReport()

        # Phase 1: exact identifiers
        unique = []
        seen: set[str] = set()
        for record in records:
            if record.key in seen:
                report.exact_duplicate_ids.append(record.key)
                continue
            seen.add(record.key)
            unique.append(record)

        # Phase 2: functional duplicates, compared against the phase-1 list
        for record in unique:
            twins = self._twins(record, unique)
            if (
                twins
                and self.hour_of(record) == self._artifact_hour
                and any(self.hour_of(twin) != self._artifact_hour for twin in twins)
            ):
                report.artifact_ids.append(record.key)
                continue
            report.kept.append(record)

        report.possible_duplicates = self._clusters(report.kept)

        if report.removed_count or report.possible_duplicates:
            logger.info(
                "deduplication_completed",
                exact_removed=len(report.exact_duplicate_ids),
                artifact_removed=len(report.artifact_ids),
                ambiguous_clusters=len(report.possible_duplicates),
            )
        return report


def dedupe(records: Iterable, settings: Optional[ReconciliationSettings] = None) -> list:
    """Deduplicate and return only the kept records."""
    engine = DeduplicationEngine(settings or ReconciliationSettings())
    return engine.run(records).kept
