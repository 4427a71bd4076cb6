"""
Temporal Correction Stage

The external service reports timestamps in an assumed UTC frame, so a
record created late in the evening west of UTC lands on tomorrow's date.
Two heuristics pull recent records back onto the viewer's today:

1. External records created within the last `recent_window_hours` (24)
   are placed on today.
2. Any record whose parsed date lies within the last `skew_guard_days`
   (3) and not in the future is placed on today.

These windows are compatibility thresholds, not timezone conversion.
Only `effective_date` is rewritten; `timestamp` is kept for ordering
and duplicate detection.
"""

from datetime import datetime, timedelta
from typing import Iterable

import structlog

from bizledger.config import ReconciliationSettings
from bizledger.models.expense import SourceOrigin
from bizledger.reconciliation.unifier import local_midnight


logger = structlog.get_logger(__name__)


class TemporalCorrectionStage:
    """Rewrites `effective_date` for recently created records."""

    def __init__(self, settings: ReconciliationSettings):
        self._tz = settings.tzinfo
        self._recent_window = timedelta(hours=settings.recent_window_hours)
        self._skew_guard = timedelta(days=settings.skew_guard_days)

    def _corrected_date(self, record, now: datetime, today):
        effective = record.effective_date

        if record.origin is SourceOrigin.EXTERNAL:
            age = now - record.timestamp
            if timedelta(0) <= age <= self._recent_window:
                effective = today

        if record.expense_date is not None:
            parsed = local_midnight(record.expense_date, self._tz)
        else:
            parsed = record.timestamp
        age = now - parsed
        if timedelta(0) <= age <= self._skew_guard:
            effective = today

        return effective

    def apply(self, records: Iterable, now: datetime) -> list:
        """
        Return the records with corrected effective dates.

        Never raises for date problems: a record whose dates cannot be
        compared is placed on today with a warning.
        """
        today = now.astimezone(self._tz).date()
        corrected = []
        moved = 0

        for record in records:
            try:
                effective = self._corrected_date(record, now, today)
            except (TypeError, ValueError, OverflowError) as e:
                logger.warning("temporal_correction_failed", record_id=record.key, error=str(e))
                effective = today

            if effective != record.effective_date:
                record = record.model_copy(update={"effective_date": effective})
                moved += 1
            corrected.append(record)

        if moved:
            logger.debug("temporal_correction_applied", moved=moved, today=today.isoformat())
        return corrected
