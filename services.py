from __future__ import annotations

import logging
from datetime import date
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import Client, Expense, ServiceRecord
from periods import MonthBucket, Period
from reports import (
    ClientRollup,
    FinancialSummary,
    Movement,
    ServiceNavigator,
    ServiceRow,
    distinct_service_dates,
    month_grid,
    month_movements,
    rollup_clients,
    rows_in_month,
    summarize_finances,
)
from schemas import ClientIn, ExpenseIn, ServiceIn, ServiceUpdateIn


logger = logging.getLogger(__name__)


class ClientDeletionError(RuntimeError):
    """The services of a client could not be removed; the client was kept."""


def local_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def to_row(service: ServiceRecord) -> ServiceRow:
    client = service.client
    return ServiceRow(
        id=service.id,
        client_id=service.client_id,
        client_name=client.name if client else "",
        client_phone=(client.phone or "") if client else "",
        description=service.description,
        amount_cents=service.amount_cents,
        service_date=service.service_date,
        location=service.location,
        is_paid=bool(service.is_paid),
        notes=service.notes,
    )


class ClientService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Client]:
        stmt = (
            select(Client)
            .where(Client.user_id == self.user_id)
            .order_by(func.lower(Client.name), Client.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, client_id: int) -> Client:
        client = self.session.get(Client, client_id)
        if not client or client.user_id != self.user_id:
            raise ValueError("Client not found")
        return client

    def add(self, data: ClientIn) -> Client:
        """Stage a new client in the session without committing."""
        name = data.name.strip()
        if not name:
            raise ValueError("Client name cannot be empty")
        phone = (data.phone or "").strip() or None
        client = Client(user_id=self.user_id, name=name, phone=phone)
        self.session.add(client)
        self.session.flush()
        return client

    def create(self, data: ClientIn) -> int:
        client = self.add(data)
        self.session.commit()
        return client.id

    def delete(self, client_id: int) -> int:
        """Delete a client and all of its services as one transaction.

        Returns the number of service rows removed. If removing the services
        fails nothing is deleted and ``ClientDeletionError`` is raised.
        """
        client = self.get(client_id)
        records = ServiceRecordService(self.session, self.user_id)
        try:
            removed = records.delete_where(client_id=client.id, commit=False)
            self.session.expire(client, ["services"])
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"client_delete_failed: client_id={client_id} step=services")
            raise ClientDeletionError("Could not delete the client's services") from exc
        try:
            self.session.delete(client)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"client_delete_failed: client_id={client_id} step=client")
            raise ClientDeletionError("Could not delete the client") from exc
        logger.info(f"client_deleted: client_id={client_id} services_removed={removed}")
        return removed


class ServiceRecordService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: ServiceIn) -> ServiceRecord:
        clients = ClientService(self.session, self.user_id)
        if data.new_client is not None:
            client = clients.add(data.new_client)
        else:
            client = clients.get(data.client_id)
        record = ServiceRecord(
            user_id=self.user_id,
            client_id=client.id,
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            service_date=data.service_date,
            location=data.location.strip(),
            is_paid=data.is_paid,
            notes=(data.notes or "").strip() or None,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(
            f"service_created: service_id={record.id} client_id={client.id} "
            f"amount_cents={record.amount_cents}"
        )
        return record

    def get(self, service_id: int) -> ServiceRecord:
        stmt = (
            select(ServiceRecord)
            .options(joinedload(ServiceRecord.client))
            .where(
                ServiceRecord.user_id == self.user_id,
                ServiceRecord.id == service_id,
            )
        )
        record = self.session.scalar(stmt)
        if not record:
            raise ValueError("Service not found")
        return record

    def fetch(self, period: Optional[Period] = None) -> list[ServiceRow]:
        stmt = (
            select(ServiceRecord)
            .options(joinedload(ServiceRecord.client))
            .where(ServiceRecord.user_id == self.user_id)
            .order_by(ServiceRecord.service_date.asc(), ServiceRecord.id.asc())
        )
        if period is not None:
            stmt = stmt.where(ServiceRecord.service_date.between(period.start, period.end))
        return [to_row(record) for record in self.session.scalars(stmt).all()]

    def update(self, service_id: int, data: ServiceUpdateIn) -> ServiceRecord:
        record = self.get(service_id)
        fields = data.model_dump(exclude_unset=True)
        if "notes" in fields:
            record.notes = (data.notes or "").strip() or None
        if "is_paid" in fields and data.is_paid is not None:
            record.is_paid = data.is_paid
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete_where(
        self,
        *,
        client_id: Optional[int] = None,
        service_id: Optional[int] = None,
        commit: bool = True,
    ) -> int:
        if client_id is None and service_id is None:
            raise ValueError("A client or service must be given")
        stmt = delete(ServiceRecord).where(ServiceRecord.user_id == self.user_id)
        if client_id is not None:
            stmt = stmt.where(ServiceRecord.client_id == client_id)
        if service_id is not None:
            stmt = stmt.where(ServiceRecord.id == service_id)
        result = self.session.execute(stmt)
        if commit:
            self.session.commit()
        return int(result.rowcount or 0)


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            type=data.type,
            amount_cents=data.amount_cents,
            details=data.details.strip(),
            expense_date=data.expense_date,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: expense_id={expense.id} type={expense.type.value} "
            f"amount_cents={expense.amount_cents}"
        )
        return expense

    def fetch(self, period: Optional[Period] = None) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.expense_date.asc(), Expense.id.asc())
        )
        if period is not None:
            stmt = stmt.where(Expense.expense_date.between(period.start, period.end))
        return self.session.scalars(stmt).all()

    def delete(self, expense_id: int) -> None:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise ValueError("Expense not found")
        self.session.delete(expense)
        self.session.commit()


class MetricsService:
    """Loads one user's rows and runs them through the report functions."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.services = ServiceRecordService(session, user_id)
        self.expenses = ExpenseService(session, user_id)

    def month_finances(
        self, bucket: MonthBucket
    ) -> tuple[FinancialSummary, list[Movement]]:
        period = bucket.period()
        services = self.services.fetch(period)
        expenses = self.expenses.fetch(period)
        return summarize_finances(services, expenses), month_movements(services, expenses)

    def calendar(
        self,
        month: MonthBucket,
        cursor: Optional[int] = None,
        move: int = 0,
        jump: Optional[str] = None,
    ) -> dict[str, object]:
        rows = self.services.fetch()
        tz = local_timezone()
        nav = ServiceNavigator.restore(distinct_service_dates(rows, tz), month, cursor)
        exhausted = False
        if move:
            nav.change_month(move)
        if jump == "first":
            nav.go_to_first_service()
        elif jump == "next":
            exhausted = not nav.go_to_next_service()
        month_rows = rows_in_month(rows, nav.month, tz)
        by_day: dict[date, list[ServiceRow]] = {}
        for row in month_rows:
            by_day.setdefault(row.service_date, []).append(row)
        return {
            "navigator": nav,
            "weeks": month_grid(nav.month),
            "exhausted": exhausted,
            "month_rows": month_rows,
            "rows_by_day": by_day,
            "summary": summarize_finances(month_rows, []),
        }

    def client_rollup(self) -> ClientRollup:
        return rollup_clients(self.services.fetch())
