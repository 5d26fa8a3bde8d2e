"""Calendar bucketing, financial totals, service navigation and client rollups.

Everything here is a pure function of rows already fetched for one user.
Money is handled as integer cents throughout.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Iterable, Optional, Protocol, Sequence, Union

from rapidfuzz.distance import Levenshtein

from periods import MonthBucket


DateLike = Union[date, datetime, str]

FUZZY_MIN_QUERY = 4


@dataclass(frozen=True)
class ServiceRow:
    """Read-only view of a service with its client's name and phone copied in.

    The client fields are taken when the row is fetched and can lag a rename
    of the client until the next fetch.
    """

    id: int
    client_id: int
    client_name: str
    client_phone: str
    description: str
    amount_cents: int
    service_date: date
    location: str
    is_paid: bool = False
    notes: Optional[str] = None


class ExpenseLike(Protocol):
    id: int
    amount_cents: int
    expense_date: date
    details: str


def day_key(value: DateLike, tz: Optional[tzinfo] = None) -> date:
    """Normalize a date-ish value to its calendar day.

    Aware datetimes are moved into ``tz`` before the day is taken; plain dates
    and ``YYYY-MM-DD`` strings are read at local midnight. Malformed strings
    raise ``ValueError``.
    """
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime):
        if value.tzinfo is not None and tz is not None:
            value = value.astimezone(tz)
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Unsupported date value: {value!r}")


def distinct_service_dates(
    rows: Iterable[ServiceRow], tz: Optional[tzinfo] = None
) -> list[date]:
    return sorted({day_key(row.service_date, tz) for row in rows})


def rows_in_month(
    rows: Iterable[ServiceRow], bucket: MonthBucket, tz: Optional[tzinfo] = None
) -> list[ServiceRow]:
    return [row for row in rows if bucket.contains(day_key(row.service_date, tz))]


def rows_on_day(
    rows: Iterable[ServiceRow], day: DateLike, tz: Optional[tzinfo] = None
) -> list[ServiceRow]:
    target = day_key(day, tz)
    return [row for row in rows if day_key(row.service_date, tz) == target]


def month_grid(bucket: MonthBucket) -> list[list[Optional[date]]]:
    """Weeks of ``bucket`` starting on Sunday, padded with ``None``."""
    cal = calendar.Calendar(firstweekday=calendar.SUNDAY)
    weeks = []
    for week in cal.monthdatescalendar(bucket.year, bucket.month):
        weeks.append([d if bucket.contains(d) else None for d in week])
    return weeks


@dataclass(frozen=True)
class FinancialSummary:
    total_paid: int = 0
    total_pending: int = 0
    total_expenses: int = 0

    @property
    def balance(self) -> int:
        # Pending income is not realized yet.
        return self.total_paid - self.total_expenses

    @property
    def total_income(self) -> int:
        return self.total_paid + self.total_pending


def summarize_finances(
    services: Iterable[ServiceRow], expenses: Iterable[ExpenseLike]
) -> FinancialSummary:
    paid = 0
    pending = 0
    for row in services:
        if row.is_paid:
            paid += int(row.amount_cents)
        else:
            pending += int(row.amount_cents)
    spent = sum(int(expense.amount_cents) for expense in expenses)
    return FinancialSummary(total_paid=paid, total_pending=pending, total_expenses=spent)


@dataclass(frozen=True)
class Movement:
    id: int
    date: date
    description: str
    amount_cents: int
    kind: str
    status: str
    client_name: Optional[str] = None


def month_movements(
    services: Iterable[ServiceRow], expenses: Iterable[ExpenseLike]
) -> list[Movement]:
    """Services as income and expenses as outflow, newest first."""
    items = [
        Movement(
            id=row.id,
            date=row.service_date,
            description=row.description,
            amount_cents=row.amount_cents,
            kind="income",
            status="paid" if row.is_paid else "pending",
            client_name=row.client_name,
        )
        for row in services
    ]
    for expense in expenses:
        label = getattr(expense.type, "label", str(expense.type))
        items.append(
            Movement(
                id=expense.id,
                date=expense.expense_date,
                description=f"{label}: {expense.details}",
                amount_cents=expense.amount_cents,
                kind="expense",
                status="paid",
            )
        )
    items.sort(key=lambda item: item.date, reverse=True)
    return items


class ServiceNavigator:
    """Cursor over distinct service dates plus the month being displayed."""

    def __init__(self, dates: Sequence[date], month: MonthBucket) -> None:
        self.dates = list(dates)
        self.month = month
        self.cursor: Optional[int] = 0 if self.dates else None

    @classmethod
    def restore(
        cls, dates: Sequence[date], month: MonthBucket, cursor: Optional[int]
    ) -> "ServiceNavigator":
        nav = cls(dates, month)
        if nav.dates and cursor is not None:
            nav.cursor = min(max(cursor, 0), len(nav.dates) - 1)
        return nav

    @property
    def current_date(self) -> Optional[date]:
        if self.cursor is None:
            return None
        return self.dates[self.cursor]

    @property
    def has_next(self) -> bool:
        return self.cursor is not None and self.cursor < len(self.dates) - 1

    def change_month(self, delta: int) -> MonthBucket:
        self.month = self.month.shift(delta)
        return self.month

    def go_to_first_service(self) -> bool:
        if not self.dates:
            return False
        self.cursor = 0
        self.month = MonthBucket.of(self.dates[0])
        return True

    def go_to_next_service(self) -> bool:
        """Advance to the next service date; ``False`` once exhausted."""
        if not self.has_next:
            return False
        self.cursor += 1
        self.month = MonthBucket.of(self.dates[self.cursor])
        return True


@dataclass
class ClientSummary:
    id: int
    name: str
    phone: str
    total_services: int = 0
    total_amount_cents: int = 0
    services: list[ServiceRow] = field(default_factory=list)

    @property
    def last_service_date(self) -> Optional[date]:
        if not self.services:
            return None
        return self.services[-1].service_date


@dataclass
class ClientRollup:
    clients: list[ClientSummary]
    total_services: int = 0
    total_amount_cents: int = 0

    def get(self, client_id: int) -> Optional[ClientSummary]:
        for summary in self.clients:
            if summary.id == client_id:
                return summary
        return None


def rollup_clients(rows: Iterable[ServiceRow]) -> ClientRollup:
    by_client: dict[int, ClientSummary] = {}
    total_services = 0
    total_amount = 0
    for row in rows:
        total_services += 1
        total_amount += int(row.amount_cents)
        summary = by_client.get(row.client_id)
        if summary is None:
            summary = ClientSummary(
                id=row.client_id,
                name=row.client_name,
                phone=row.client_phone or "",
            )
            by_client[row.client_id] = summary
        summary.total_services += 1
        summary.total_amount_cents += int(row.amount_cents)
        summary.services.append(row)
    return ClientRollup(
        clients=list(by_client.values()),
        total_services=total_services,
        total_amount_cents=total_amount,
    )


def _name_matches(name: str, query: str) -> bool:
    name_lower = name.lower()
    if query in name_lower:
        return True
    if len(query) < FUZZY_MIN_QUERY:
        return False
    return any(
        Levenshtein.distance(query, word) <= 1 for word in name_lower.split()
    )


def filter_clients(
    summaries: Iterable[ClientSummary], query: Optional[str]
) -> list[ClientSummary]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(summaries)
    return [s for s in summaries if _name_matches(s.name, needle)]
