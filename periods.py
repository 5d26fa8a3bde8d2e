from dataclasses import dataclass
from datetime import date
from typing import Optional


MIN_YEAR = 1900
MAX_YEAR = 2100


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True, order=True)
class MonthBucket:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12")

    @classmethod
    def of(cls, day: date) -> "MonthBucket":
        return cls(day.year, day.month)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        following = self.shift(1)
        return following.first_day - date.resolution

    @property
    def slug(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def period(self) -> Period:
        return Period(self.slug, self.first_day, self.last_day)

    def shift(self, delta: int) -> "MonthBucket":
        # Count months from year 0 so negative deltas roll the year back.
        index = self.year * 12 + (self.month - 1) + delta
        year, month_index = divmod(index, 12)
        return MonthBucket(year, month_index + 1)

    def contains(self, day: date) -> bool:
        return day.year == self.year and day.month == self.month


def resolve_month(
    year: Optional[str],
    month: Optional[str],
    *,
    today: Optional[date] = None,
) -> MonthBucket:
    """Parse ``year``/``month`` query values, defaulting to the current month."""
    today = today or date.today()
    if not year and not month:
        return MonthBucket.of(today)
    try:
        year_value = int(year) if year else today.year
        month_value = int(month) if month else today.month
    except ValueError as exc:
        raise ValueError("Year and month must be numbers") from exc
    if not MIN_YEAR <= year_value <= MAX_YEAR:
        raise ValueError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
    return MonthBucket(year_value, month_value)
