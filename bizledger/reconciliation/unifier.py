"""
Record Shape Unifier

Converts the two source shapes into one ExpenseRecord shape:

- Relational rows pack title and description into one `description`
  column, either "title|description" (current format) or
  "title - description" (legacy; only the first " - " separates).
- External-service objects sometimes arrive with the text in
  `description` and an empty `title`; those are swapped.

The record origin is decided here, once, from the identifier shape
(36-character hyphenated UUID -> relational, anything else -> external)
and carried on the record as its `source` tag.

Caps are a data contract and are applied here, not at display time.
Bad dates never raise: they fall back to "now" with a warning. Rows with
no identifier or no usable amount are skipped with a warning.
"""

import re
from datetime import date, datetime, time, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from bizledger.config import ReconciliationSettings
from bizledger.models.expense import (
    ExternalExpense,
    RelationalExpense,
    SourceOrigin,
)


logger = structlog.get_logger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

PIPE_SEPARATOR = "|"
LEGACY_SEPARATOR = " - "
UNTITLED = "Untitled"


def origin_for_identifier(identifier: Any) -> SourceOrigin:
    """Classify an identifier by shape. Only called at ingestion."""
    text = str(identifier).strip()
    if len(text) == 36 and UUID_PATTERN.match(text):
        return SourceOrigin.RELATIONAL
    return SourceOrigin.EXTERNAL


def split_packed_description(packed: Optional[str]) -> tuple[str, str]:
    """
    Split a relational `description` column into (title, description).

    >>> split_packed_description("Coffee|Morning meeting with client")
    ('Coffee', 'Morning meeting with client')
    >>> split_packed_description("Coffee - Morning - meeting")
    ('Coffee', 'Morning - meeting')
    >>> split_packed_description("Coffee")
    ('Coffee', '')
    """
    if not packed:
        return "", ""
    if PIPE_SEPARATOR in packed:
        title, _, description = packed.partition(PIPE_SEPARATOR)
    elif LEGACY_SEPARATOR in packed:
        title, _, description = packed.partition(LEGACY_SEPARATOR)
    else:
        title, description = packed, ""
    return title.strip(), description.strip()


def pack_description(title: str, description: str = "") -> str:
    """Inverse of split_packed_description, always in the pipe format."""
    return f"{title.strip()}{PIPE_SEPARATOR}{(description or '').strip()}"


def parse_amount(value: Any) -> Optional[Decimal]:
    """Convert "$1,234.50", 12.5 or "12" to a cent-quantized Decimal."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            value = value.replace("$", "").replace(",", "").strip()
            if not value:
                return None
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Decimal("0.01"))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an instant. Naive values are taken to be UTC.

    Raises:
        ValueError: If the value is present but unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_calendar_date(value: Any, tz: tzinfo) -> Optional[date]:
    """
    Parse a calendar date. Values carrying a time of day are converted
    to the viewer's timezone before the date is taken.

    Raises:
        ValueError: If the value is present but unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return parse_timestamp(value).astimezone(tz).date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        return parse_timestamp(text).astimezone(tz).date()
    raise ValueError(f"Unsupported date type: {type(value).__name__}")


def local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


class RecordShapeUnifier:
    """
    Builds canonical ExpenseRecords from raw source payloads.

    Args:
        settings: Caps and viewer timezone
    """

    def __init__(self, settings: ReconciliationSettings):
        self._settings = settings
        self._tz = settings.tzinfo

    def _resolve_dates(
        self,
        record_id: str,
        raw_date: Any,
        raw_created_at: Any,
        now: datetime,
    ) -> tuple[Optional[date], Optional[datetime], date, datetime]:
        """
        Apply the date precedence rule.

        Returns:
            (expense_date, created_at, effective_date, timestamp)
        """
        try:
            created_at = parse_timestamp(raw_created_at)
        except ValueError:
            logger.warning("expense_timestamp_malformed", record_id=record_id,
                           value=str(raw_created_at))
            created_at = None

        try:
            explicit = parse_calendar_date(raw_date, self._tz)
        except ValueError:
            logger.warning("expense_date_malformed", record_id=record_id,
                           value=str(raw_date))
            explicit = None

        if explicit is not None:
            return explicit, created_at, explicit, created_at or local_midnight(explicit, self._tz)

        if created_at is not None:
            return None, created_at, created_at.astimezone(self._tz).date(), created_at

        logger.warning("expense_date_missing_using_now", record_id=record_id)
        return None, None, now.astimezone(self._tz).date(), now

    def _finish_text(self, title: str, description: str) -> tuple[str, str]:
        """Back-fill, default and truncate title/description."""
        title = (title or "").strip()
        description = (description or "").strip()
        if not title and description:
            title, description = description, ""
        if not title:
            title = UNTITLED
        return (
            title[:self._settings.title_max_length].strip(),
            description[:self._settings.description_max_length].strip(),
        )

    def _build(
        self,
        raw_id: Any,
        raw: dict,
        title: str,
        description: str,
        raw_date: Any,
        now: datetime,
    ) -> Optional[Union[RelationalExpense, ExternalExpense]]:
        if raw_id is None or str(raw_id).strip() == "":
            logger.warning("expense_skipped_missing_id", payload_keys=sorted(raw.keys()))
            return None
        record_id = str(raw_id).strip()

        amount = parse_amount(raw.get("amount"))
        if amount is None or amount < 0:
            logger.warning("expense_skipped_bad_amount", record_id=record_id,
                           value=str(raw.get("amount")))
            return None

        title, description = self._finish_text(title, description)
        expense_date, created_at, effective, timestamp = self._resolve_dates(
            record_id, raw_date, raw.get("created_at"), now,
        )

        raw_category = raw.get("category")
        category = str(raw_category).strip() if raw_category else ""

        fields = dict(
            amount=amount,
            title=title,
            description=description,
            category=category or "Other",
            original_category=category or None,
            expense_date=expense_date,
            created_at=created_at,
            effective_date=effective,
            timestamp=timestamp,
            vendor=raw.get("vendor") or None,
            receipt_url=raw.get("receipt_url") or raw.get("receiptUrl") or None,
            status=raw.get("status") or None,
        )

        try:
            if origin_for_identifier(record_id) is SourceOrigin.RELATIONAL:
                return RelationalExpense(id=record_id, **fields)
            return ExternalExpense(id=record_id, **fields)
        except ValidationError as e:
            logger.warning("expense_skipped_invalid", record_id=record_id, error=str(e))
            return None

    def unify_relational(
        self,
        row: dict,
        now: datetime,
    ) -> Optional[Union[RelationalExpense, ExternalExpense]]:
        """Unify one relational-store row (packed description format)."""
        own_title = (row.get("title") or "").strip()
        if own_title:
            title, description = own_title, row.get("description") or ""
        else:
            title, description = split_packed_description(row.get("description"))

        raw_date = row.get("expense_date") or row.get("date")
        return self._build(row.get("id"), row, title, description, raw_date, now)

    def unify_external(
        self,
        raw: dict,
        now: datetime,
    ) -> Optional[Union[RelationalExpense, ExternalExpense]]:
        """Unify one external-service object (title/description swap)."""
        title = str(raw.get("title") or "")
        description = str(raw.get("description") or "")
        raw_date = raw.get("date") or raw.get("expense_date")
        return self._build(raw.get("id"), raw, title, description, raw_date, now)

    def unify(
        self,
        external_records: Iterable[dict],
        relational_rows: Iterable[dict],
        now: datetime,
    ) -> list[Union[RelationalExpense, ExternalExpense]]:
        """
        Unify both streams. External records come first, then relational
        rows, each in the order received.
        """
        unified = []
        for raw in external_records:
            record = self.unify_external(raw, now)
            if record is not None:
                unified.append(record)
        for row in relational_rows:
            record = self.unify_relational(row, now)
            if record is not None:
                unified.append(record)
        return unified
