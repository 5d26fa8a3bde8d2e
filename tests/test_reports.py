from dataclasses import dataclass
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from models import ExpenseType
from periods import MonthBucket
from reports import (
    ServiceNavigator,
    ServiceRow,
    day_key,
    distinct_service_dates,
    filter_clients,
    month_grid,
    month_movements,
    rollup_clients,
    rows_in_month,
    rows_on_day,
    summarize_finances,
)


@dataclass
class FakeExpense:
    id: int
    amount_cents: int
    expense_date: date
    details: str = ""
    type: ExpenseType = ExpenseType.consumables


def row(
    id: int,
    amount_cents: int,
    service_date,
    *,
    is_paid: bool = False,
    client_id: int = 1,
    client_name: str = "Ana Gómez",
) -> ServiceRow:
    return ServiceRow(
        id=id,
        client_id=client_id,
        client_name=client_name,
        client_phone="300 000 0000",
        description=f"Servicio {id}",
        amount_cents=amount_cents,
        service_date=service_date,
        location="Bogotá",
        is_paid=is_paid,
    )


def test_summary_example_from_one_month() -> None:
    services = [row(1, 100, date(2024, 5, 1), is_paid=True), row(2, 50, date(2024, 5, 2))]
    expenses = [FakeExpense(1, 30, date(2024, 5, 3))]

    summary = summarize_finances(services, expenses)

    assert summary.total_paid == 100
    assert summary.total_pending == 50
    assert summary.total_expenses == 30
    assert summary.balance == 70


def test_summary_of_nothing_is_all_zero() -> None:
    summary = summarize_finances([], [])

    assert (summary.total_paid, summary.total_pending, summary.total_expenses) == (0, 0, 0)
    assert summary.balance == 0


def test_paid_plus_pending_is_total_income_and_pending_not_in_balance() -> None:
    services = [
        row(1, 1_999, date(2024, 5, 1), is_paid=True),
        row(2, 10_001, date(2024, 5, 1)),
        row(3, 7, date(2024, 5, 9), is_paid=True),
        row(4, 250_000, date(2024, 5, 20)),
    ]
    expenses = [FakeExpense(1, 5_000, date(2024, 5, 3)), FakeExpense(2, 1, date(2024, 5, 4))]

    summary = summarize_finances(services, expenses)

    assert summary.total_paid + summary.total_pending == sum(r.amount_cents for r in services)
    assert summary.total_income == 262_007
    assert summary.balance == 2_006 - 5_001


def test_day_key_normalizes_strings_datetimes_and_dates() -> None:
    bogota = ZoneInfo("America/Bogota")

    assert day_key("2024-03-01") == date(2024, 3, 1)
    assert day_key(date(2024, 3, 1)) == date(2024, 3, 1)
    assert day_key(datetime(2024, 3, 1, 23, 30)) == date(2024, 3, 1)
    # 02:00 UTC on the 2nd is still the evening of the 1st in Bogotá.
    utc_late = datetime(2024, 3, 2, 2, 0, tzinfo=timezone.utc)
    assert day_key(utc_late, bogota) == date(2024, 3, 1)
    assert day_key("2024-03-02T02:00:00+00:00", bogota) == date(2024, 3, 1)


def test_day_key_fails_fast_on_malformed_dates() -> None:
    with pytest.raises(ValueError):
        day_key("2024-02-30")
    with pytest.raises(ValueError):
        day_key("no es fecha")


def test_distinct_dates_are_deduplicated_sorted_and_idempotent() -> None:
    rows = [
        row(1, 10, date(2024, 3, 5)),
        row(2, 10, "2024-01-20"),
        row(3, 10, date(2024, 3, 5)),
        row(4, 10, datetime(2024, 1, 20, 15, 0)),
    ]

    first = distinct_service_dates(rows)

    assert first == [date(2024, 1, 20), date(2024, 3, 5)]
    assert distinct_service_dates(rows) == first
    assert distinct_service_dates([]) == []


def test_month_and_day_membership() -> None:
    rows = [
        row(1, 10, date(2023, 12, 31)),
        row(2, 10, date(2024, 1, 1)),
        row(3, 10, date(2024, 1, 31)),
        row(4, 10, date(2025, 1, 15)),
    ]

    in_january = rows_in_month(rows, MonthBucket(2024, 1))

    assert [r.id for r in in_january] == [2, 3]
    assert [r.id for r in rows_on_day(rows, "2024-01-31")] == [3]
    assert rows_in_month([], MonthBucket(2024, 1)) == []


def test_month_grid_starts_on_sunday_and_pads() -> None:
    # March 2024 starts on a Friday.
    weeks = month_grid(MonthBucket(2024, 3))

    assert weeks[0][:5] == [None] * 5
    assert weeks[0][5] == date(2024, 3, 1)
    days = [d for week in weeks for d in week if d is not None]
    assert days[0] == date(2024, 3, 1)
    assert days[-1] == date(2024, 3, 31)
    assert len(days) == 31
    assert all(len(week) == 7 for week in weeks)


def test_month_movements_merge_newest_first() -> None:
    services = [row(1, 100, date(2024, 5, 1), is_paid=True), row(2, 50, date(2024, 5, 9))]
    expenses = [FakeExpense(7, 30, date(2024, 5, 5), details="Cemento")]

    movements = month_movements(services, expenses)

    assert [m.date for m in movements] == [
        date(2024, 5, 9),
        date(2024, 5, 5),
        date(2024, 5, 1),
    ]
    assert movements[0].status == "pending"
    assert movements[1].kind == "expense"
    assert movements[1].description == "Insumos: Cemento"
    assert movements[1].client_name is None
    assert movements[2].client_name == "Ana Gómez"


def test_navigator_walks_every_date_then_saturates() -> None:
    dates = [date(2023, 11, 2), date(2024, 1, 5), date(2024, 1, 9), date(2024, 6, 1)]
    nav = ServiceNavigator(dates, MonthBucket(2025, 1))

    assert nav.go_to_first_service()
    assert nav.cursor == 0
    assert nav.month == MonthBucket(2023, 11)

    moves = [nav.go_to_next_service() for _ in range(len(dates))]

    assert moves == [True, True, True, False]
    assert nav.cursor == len(dates) - 1
    assert nav.month == MonthBucket(2024, 6)
    assert not nav.has_next
    assert not nav.go_to_next_service()
    assert nav.cursor == len(dates) - 1


def test_change_month_leaves_cursor_alone() -> None:
    nav = ServiceNavigator([date(2024, 1, 5), date(2024, 2, 1)], MonthBucket(2024, 1))
    nav.go_to_next_service()

    assert nav.change_month(-1) == MonthBucket(2024, 1)
    assert nav.change_month(13) == MonthBucket(2025, 2)
    assert nav.cursor == 1
    assert nav.current_date == date(2024, 2, 1)


def test_navigator_on_empty_sequence_is_a_no_op() -> None:
    nav = ServiceNavigator([], MonthBucket(2024, 4))

    assert nav.cursor is None
    assert not nav.go_to_first_service()
    assert not nav.go_to_next_service()
    assert nav.month == MonthBucket(2024, 4)
    assert nav.current_date is None


def test_navigator_restore_clamps_cursor() -> None:
    dates = [date(2024, 1, 5), date(2024, 2, 1)]

    assert ServiceNavigator.restore(dates, MonthBucket(2024, 1), 9).cursor == 1
    assert ServiceNavigator.restore(dates, MonthBucket(2024, 1), -3).cursor == 0
    assert ServiceNavigator.restore(dates, MonthBucket(2024, 1), None).cursor == 0
    assert ServiceNavigator.restore([], MonthBucket(2024, 1), 4).cursor is None


def test_rollup_groups_by_client_in_first_seen_order() -> None:
    rows = [
        row(1, 100, date(2024, 1, 2), client_id=7, client_name="Pedro"),
        row(2, 40, date(2024, 1, 3), client_id=3, client_name="Ana"),
        row(3, 60, date(2024, 2, 1), client_id=7, client_name="Pedro"),
    ]

    rollup = rollup_clients(rows)

    assert [c.id for c in rollup.clients] == [7, 3]
    pedro = rollup.get(7)
    assert pedro.name == "Pedro"
    assert pedro.total_services == 2
    assert pedro.total_amount_cents == 160
    assert [s.id for s in pedro.services] == [1, 3]
    assert pedro.last_service_date == date(2024, 2, 1)
    assert rollup.total_services == 3
    assert rollup.total_amount_cents == 200
    assert rollup.get(99) is None


def test_rollup_of_nothing() -> None:
    rollup = rollup_clients([])

    assert rollup.clients == []
    assert (rollup.total_services, rollup.total_amount_cents) == (0, 0)


def test_filter_clients_by_substring_and_small_typos() -> None:
    rows = [
        row(1, 1, date(2024, 1, 1), client_id=1, client_name="Luis Gonzalez"),
        row(2, 1, date(2024, 1, 1), client_id=2, client_name="Ana Mora"),
    ]
    clients = rollup_clients(rows).clients

    assert [c.id for c in filter_clients(clients, "ana")] == [2]
    assert [c.id for c in filter_clients(clients, "GONZALES")] == [1]
    assert [c.id for c in filter_clients(clients, "moro")] == [2]
    assert filter_clients(clients, "xyz") == []
    assert len(filter_clients(clients, "  ")) == 2
