from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Protocol

from .errors import CollaboratorError
from .logging_utils import log_event
from .models import HistoryRecord, QueryView
from .settings import settings


class SortKey(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    CIRCUITY_ASC = "circuity_asc"
    CIRCUITY_DESC = "circuity_desc"


def parse_sort_key(value: SortKey | str | None) -> SortKey:
    if isinstance(value, SortKey):
        return value
    try:
        return SortKey(str(value or "").strip().lower())
    except ValueError:
        return SortKey.NEWEST


def number_text(value: float | int | None) -> str:
    """Shortest decimal text for a number, with integral floats shown without ".0"."""
    if value is None:
        return ""
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        return ""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def _matches(record: HistoryRecord, needle: str) -> bool:
    fields = (
        record.origin.label.lower(),
        record.destination.label.lower(),
        number_text(record.circuity_factor),
        number_text(record.id),
    )
    return any(needle in field for field in fields)


def filter_records(records: Sequence[HistoryRecord], filter_text: str) -> list[HistoryRecord]:
    if not filter_text.strip():
        return list(records)
    needle = filter_text.lower()
    return [record for record in records if _matches(record, needle)]


def _circuity_value(record: HistoryRecord) -> float:
    return record.circuity_factor if record.circuity_factor is not None else 0.0


# Descending orders negate the key, so ties keep their input order in both
# directions. Records without a factor sort after every factor in ascending
# order and before every factor in descending order, mirroring each other.
_SORT_KEYS: dict[SortKey, Callable[[HistoryRecord], tuple[float, ...]]] = {
    SortKey.NEWEST: lambda r: (-r.created_at.timestamp(),),
    SortKey.OLDEST: lambda r: (r.created_at.timestamp(),),
    SortKey.CIRCUITY_ASC: lambda r: (float(r.circuity_factor is None), _circuity_value(r)),
    SortKey.CIRCUITY_DESC: lambda r: (float(r.circuity_factor is not None), -_circuity_value(r)),
}


def sort_records(records: Sequence[HistoryRecord], sort_key: SortKey | str) -> list[HistoryRecord]:
    return sorted(records, key=_SORT_KEYS[parse_sort_key(sort_key)])


def total_pages_for(matched: int, page_size: int) -> int:
    return max(1, math.ceil(matched / page_size))


def view(
    records: Sequence[HistoryRecord],
    filter_text: str,
    sort_key: SortKey | str,
    page: int,
    page_size: int,
) -> QueryView:
    """Filter, sort and slice `records` without touching them.

    Pages are 1-indexed. A page outside [1, total_pages] yields no items
    instead of an error; callers clamp before calling.
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    matched = sort_records(filter_records(records, filter_text), sort_key)
    total_pages = total_pages_for(len(matched), page_size)

    if 1 <= page <= total_pages:
        start = (page - 1) * page_size
        items = tuple(matched[start : start + page_size])
    else:
        items = ()

    return QueryView(
        items=items,
        total_matched=len(matched),
        page=page,
        total_pages=total_pages,
        total_records=len(records),
    )


def clamp_page(page: int, total_pages: int) -> int:
    return min(max(1, page), max(1, total_pages))


def page_window(current: int, total_pages: int, *, width: int = 5) -> list[int]:
    """Page numbers for a pager: up to `width` numbers kept around `current`."""
    total_pages = max(1, total_pages)
    width = max(1, width)
    if total_pages <= width:
        return list(range(1, total_pages + 1))

    current = clamp_page(current, total_pages)
    half = width // 2
    start = min(max(1, current - half), total_pages - width + 1)
    return list(range(start, start + width))


class HistorySource(Protocol):
    async def fetch_all_history(self) -> list[HistoryRecord]: ...


class HistoryBrowser:
    """Call-site state for the history table: records, filter, sort and page.

    Changing the filter or the sort order always returns to page 1.
    """

    def __init__(self, records: Sequence[HistoryRecord] = (), *, page_size: int | None = None) -> None:
        self._records: tuple[HistoryRecord, ...] = tuple(records)
        self.page_size = int(page_size or settings.history_page_size)
        self.filter_text = ""
        self.sort_key = SortKey.NEWEST
        self.page = 1
        self.error: str | None = None
        self.loading = False

    @property
    def records(self) -> tuple[HistoryRecord, ...]:
        return self._records

    def current_view(self) -> QueryView:
        return view(self._records, self.filter_text, self.sort_key, self.page, self.page_size)

    def set_records(self, records: Sequence[HistoryRecord]) -> QueryView:
        self._records = tuple(records)
        self.page = 1
        return self.current_view()

    def set_filter(self, filter_text: str) -> QueryView:
        self.filter_text = filter_text
        self.page = 1
        return self.current_view()

    def clear_filter(self) -> QueryView:
        return self.set_filter("")

    def set_sort(self, sort_key: SortKey | str) -> QueryView:
        self.sort_key = parse_sort_key(sort_key)
        self.page = 1
        return self.current_view()

    def go_to_page(self, page: int) -> QueryView:
        current = self.current_view()
        if 1 <= page <= current.total_pages:
            self.page = page
            return self.current_view()
        return current

    def next_page(self) -> QueryView:
        return self.go_to_page(self.page + 1)

    def prev_page(self) -> QueryView:
        return self.go_to_page(self.page - 1)

    def pager(self, *, width: int = 5) -> list[int]:
        return page_window(self.page, self.current_view().total_pages, width=width)

    async def load(self, source: HistorySource) -> QueryView:
        self.loading = True
        try:
            records = await source.fetch_all_history()
        except CollaboratorError as exc:
            log_event(
                "history_load_failed",
                level=logging.WARNING,
                reason_code=exc.reason_code,
                error=str(exc),
            )
            self.error = str(exc)
            return self.set_records(())
        finally:
            self.loading = False
        self.error = None
        return self.set_records(records)
