import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError

MAX_PAGE_SIZE = 100


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def parse_year_month(value: Optional[str], *, today: Optional[date] = None) -> date:
    """Parse ``YYYY-MM`` into the first day of that month (current month when empty)."""
    if not value:
        return month_start(today or local_today())
    try:
        return datetime.strptime(value.strip(), "%Y-%m").date()
    except ValueError as exc:
        raise ValidationError("Invalid month format. Use YYYY-MM") from exc


@dataclass(frozen=True)
class PageRequest:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.limit) if total else 0


def page_request(
    page: Optional[int], limit: Optional[int], *, default_limit: int
) -> PageRequest:
    if page is None or page <= 0:
        page = 1
    if limit is None:
        limit = default_limit
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    return PageRequest(page=page, limit=limit)
