"""Expense reconciliation pipeline."""

from bizledger.reconciliation.categories import (
    CATEGORY_SYNONYMS,
    DEFAULT_CATEGORIES,
    FALLBACK_CATEGORY,
    CategoryNormalizer,
    CategoryPersistenceError,
    CategoryRegistry,
    match_category,
    normalize_display_name,
)
from bizledger.reconciliation.dedupe import (
    DeduplicationEngine,
    DeduplicationReport,
    dedupe,
)
from bizledger.reconciliation.grouping import (
    build_view,
    day_key,
    filter_by_category,
    group_by_day,
    sort_records,
    summarize_by_category,
    view_window,
)
from bizledger.reconciliation.pipeline import ReconciliationPipeline
from bizledger.reconciliation.temporal import TemporalCorrectionStage
from bizledger.reconciliation.unifier import (
    RecordShapeUnifier,
    origin_for_identifier,
    pack_description,
    split_packed_description,
)

__all__ = [
    "CATEGORY_SYNONYMS",
    "DEFAULT_CATEGORIES",
    "FALLBACK_CATEGORY",
    "CategoryNormalizer",
    "CategoryPersistenceError",
    "CategoryRegistry",
    "DeduplicationEngine",
    "DeduplicationReport",
    "RecordShapeUnifier",
    "ReconciliationPipeline",
    "TemporalCorrectionStage",
    "build_view",
    "day_key",
    "dedupe",
    "filter_by_category",
    "group_by_day",
    "match_category",
    "normalize_display_name",
    "origin_for_identifier",
    "pack_description",
    "sort_records",
    "split_packed_description",
    "summarize_by_category",
    "view_window",
]
