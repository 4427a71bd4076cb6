"""
Ordering & Grouping Stage

Sorts records newest first and groups them by calendar day.

- Sort: `effective_date` descending, then `timestamp` descending. The two
  keys are independent because temporal correction may have moved a
  record's day without touching its timestamp.
- Key: `effective_date.isoformat()`, computed once per record by
  `day_key` and used for both the view-mode filter and the grouping.
- Totals: Decimal accumulation quantized to cents.
"""

import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from bizledger.models.expense import (
    CategorySummary,
    DayGroup,
    GroupedExpenseView,
    ViewMode,
    to_cents,
)


def day_key(day: date) -> str:
    """The one grouping key for a calendar day."""
    return day.isoformat()


def sum_amounts(records: Iterable) -> Decimal:
    return to_cents(sum((record.amount for record in records), Decimal("0")))


def sort_records(records: Iterable) -> list:
    """Two-level sort: effective_date desc, then timestamp desc."""
    return sorted(
        records,
        key=lambda record: (record.effective_date, record.timestamp),
        reverse=True,
    )


def view_window(
    view_mode: ViewMode,
    today: date,
    selected_date: Optional[date] = None,
) -> Optional[tuple[date, date]]:
    """
    Inclusive (first, last) day shown by a view mode, or None for all.

    Weeks run Sunday through Saturday.
    """
    if view_mode == ViewMode.ALL:
        return None
    if view_mode == ViewMode.TODAY:
        return today, today
    if view_mode == ViewMode.WEEK:
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if view_mode == ViewMode.MONTH:
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last)
    if view_mode == ViewMode.YEAR:
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if view_mode == ViewMode.CUSTOM:
        day = selected_date or today
        return day, day
    raise ValueError(f"Unknown view mode: {view_mode}")


def group_by_day(
    records: Iterable,
    today: date,
    view_mode: ViewMode = ViewMode.ALL,
    selected_date: Optional[date] = None,
    expanded_keys: Iterable[str] = (),
) -> dict[str, DayGroup]:
    """
    Filter to the view window and group by day, newest day first.

    A group is expanded in TODAY view, or when its key is in
    `expanded_keys`.
    """
    window = view_window(view_mode, today, selected_date)
    bounds = (day_key(window[0]), day_key(window[1])) if window else None
    expanded = set(expanded_keys)

    groups: dict[str, DayGroup] = {}
    for record in sort_records(records):
        key = day_key(record.effective_date)
        # ISO keys order the same way as the dates they encode
        if bounds and not (bounds[0] <= key <= bounds[1]):
            continue
        group = groups.get(key)
        if group is None:
            group = groups[key] = DayGroup(
                date_key=key,
                day=record.effective_date,
                expanded=view_mode == ViewMode.TODAY or key in expanded,
            )
        group.records.append(record)

    for group in groups.values():
        group.total = sum_amounts(group.records)
    return groups


def build_view(
    records: Iterable,
    today: date,
    view_mode: ViewMode = ViewMode.ALL,
    selected_date: Optional[date] = None,
    expanded_keys: Iterable[str] = (),
    possible_duplicates: Optional[list[list[str]]] = None,
    warnings: Optional[list[str]] = None,
) -> GroupedExpenseView:
    groups = group_by_day(records, today, view_mode, selected_date, expanded_keys)

    # Only report clusters whose members are all visible in this view
    visible = {record.key for group in groups.values() for record in group.records}
    clusters = [
        ids for ids in (possible_duplicates or [])
        if all(i in visible for i in ids)
    ]

    return GroupedExpenseView(
        view_mode=view_mode,
        groups=groups,
        total=to_cents(sum((g.total for g in groups.values()), Decimal("0"))),
        count=sum(g.count for g in groups.values()),
        possible_duplicates=clusters,
        warnings=list(warnings or []),
    )


def summarize_by_category(
    records: Iterable,
    categories: Optional[list[str]] = None,
    month: Optional[date] = None,
) -> list[CategorySummary]:
    """
    Spend per category, optionally limited to the month containing `month`.

    Every name in `categories` appears (with a zero total if unused), in
    set order; categories seen only on records follow, largest first.
    """
    buckets: dict[str, list] = {}
    for record in records:
        if month and (
            record.effective_date.year != month.year
            or record.effective_date.month != month.month
        ):
            continue
        buckets.setdefault(record.category, []).append(record)

    summaries = []
    for name in categories or []:
        matched = buckets.pop(name, [])
        summaries.append(CategorySummary(
            category=name,
            total=sum_amounts(matched),
            count=len(matched),
        ))

    extra = [
        CategorySummary(category=name, total=sum_amounts(items), count=len(items))
        for name, items in buckets.items()
    ]
    extra.sort(key=lambda summary: summary.total, reverse=True)
    return summaries + extra


def filter_by_category(records: Iterable, category: str) -> list:
    """Records in one category (case-insensitive), newest first."""
    wanted = category.strip().lower()
    return sort_records(r for r in records if r.category.lower() == wanted)
