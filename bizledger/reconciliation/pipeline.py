"""
Expense Reconciliation Pipeline

raw external records + raw relational rows
    -> Record Shape Unifier
    -> Temporal Correction Stage
    -> Deduplication Engine
    -> Category Normalizer (per record)
    -> Ordering & Grouping Stage
    -> GroupedExpenseView

Passes are serialized: a pass started while another is running waits
behind it (asyncio.Lock wakes waiters in FIFO order) and there is no
cancellation. The stages themselves are plain transforms; only category
normalization may touch storage.
"""

import asyncio
from datetime import date, datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

import structlog

from bizledger.config import ReconciliationSettings
from bizledger.models.expense import GroupedExpenseView, ViewMode
from bizledger.reconciliation.categories import CategoryNormalizer
from bizledger.reconciliation.dedupe import DeduplicationEngine
from bizledger.reconciliation.grouping import build_view
from bizledger.reconciliation.temporal import TemporalCorrectionStage
from bizledger.reconciliation.unifier import RecordShapeUnifier


logger = structlog.get_logger(__name__)


class ReconciliationPipeline:
    """
    One user's reconciliation pipeline.

    Args:
        normalizer: Category normalizer bound to the user's registry
        settings: Thresholds and viewer timezone
        audit_logger: Optional AuditLogger for pass summaries
    """

    def __init__(
        self,
        normalizer: CategoryNormalizer,
        settings: Optional[ReconciliationSettings] = None,
        audit_logger=None,
    ):
        self._settings = settings or ReconciliationSettings()
        self._normalizer = normalizer
        self._audit_logger = audit_logger

        self._unifier = RecordShapeUnifier(self._settings)
        self._temporal = TemporalCorrectionStage(self._settings)
        self._dedupe = DeduplicationEngine(self._settings)
        self._lock = asyncio.Lock()

    @property
    def normalizer(self) -> CategoryNormalizer:
        return self._normalizer

    @property
    def user_id(self) -> str:
        return self._normalizer.registry.user_id

    async def reconcile(
        self,
        external_records: Iterable[dict],
        relational_records: Iterable[dict],
        *,
        now: Optional[datetime] = None,
        view_mode: ViewMode = ViewMode.ALL,
        selected_date: Optional[date] = None,
        expanded_keys: Iterable[str] = (),
        warnings: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> GroupedExpenseView:
        """
        Run one full pass and return the grouped view.

        Args:
            external_records: Raw objects from the external service
            relational_records: Raw rows from the relational store
            now: Clock override (timezone-aware; naive is taken as UTC)
            view_mode: Day filter applied before grouping
            selected_date: The day shown in CUSTOM view
            expanded_keys: Day keys the user has expanded
            warnings: Messages to carry into the view (e.g. failed sources)
        """
        async with self._lock:
            return await self._run(
                list(external_records),
                list(relational_records),
                now=now,
                view_mode=view_mode,
                selected_date=selected_date,
                expanded_keys=expanded_keys,
                warnings=list(warnings or []),
                correlation_id=correlation_id,
            )

    async def _run(
        self,
        external_records: list[dict],
        relational_records: list[dict],
        *,
        now: Optional[datetime],
        view_mode: ViewMode,
        selected_date: Optional[date],
        expanded_keys: Iterable[str],
        warnings: list[str],
        correlation_id: Optional[UUID],
    ) -> GroupedExpenseView:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        today = now.astimezone(self._settings.tzinfo).date()

        unified = self._unifier.unify(external_records, relational_records, now)
        corrected = self._temporal.apply(unified, now)
        report = self._dedupe.run(corrected)

        normalized = []
        for record in report.kept:
            category = await self._normalizer.normalize(record.original_category)
            if category != record.category:
                record = record.model_copy(update={"category": category})
            normalized.append(record)

        if report.possible_duplicates:
            warnings.append(
                f"{len(report.possible_duplicates)} possible duplicate expense(s) found. "
                "Review entries with the same amount and time and delete any extras."
            )

        view = build_view(
            normalized,
            today,
            view_mode=view_mode,
            selected_date=selected_date,
            expanded_keys=expanded_keys,
            possible_duplicates=report.possible_duplicates,
            warnings=warnings,
        )

        logger.info(
            "reconciliation_completed",
            user_id=self.user_id,
            external_in=len(external_records),
            relational_in=len(relational_records),
            unified=len(unified),
            removed=report.removed_count,
            shown=view.count,
            groups=len(view.groups),
            view_mode=view_mode.value,
        )

        if self._audit_logger:
            if report.removed_count:
                await self._audit_logger.log_duplicates_removed(
                    user_id=self.user_id,
                    dropped_ids=report.dropped_ids,
                    ambiguous_groups=len(report.possible_duplicates),
                    correlation_id=correlation_id,
                )
            await self._audit_logger.log_reconciliation_completed(
                user_id=self.user_id,
                record_count=view.count,
                group_count=len(view.groups),
                removed_count=report.removed_count,
                correlation_id=correlation_id,
            )

        return view
