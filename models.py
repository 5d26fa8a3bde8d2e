from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class ExpenseType(str, Enum):
    per_diem = "viaticos"
    consumables = "insumos"
    machinery = "maquinaria"
    repairs = "reparaciones"

    @property
    def label(self) -> str:
        return EXPENSE_TYPE_LABELS[self]


EXPENSE_TYPE_LABELS = {
    ExpenseType.per_diem: "Viáticos",
    ExpenseType.consumables: "Insumos",
    ExpenseType.machinery: "Maquinaria",
    ExpenseType.repairs: "Reparaciones",
}


EXPENSE_TYPE_ENUM = SAEnum(
    ExpenseType,
    name="expensetype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Client(Base, TimestampMixin):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(40))

    services: Mapped[list["ServiceRecord"]] = relationship(
        "ServiceRecord", back_populates="client", passive_deletes=True
    )

    __table_args__ = (Index("ix_clients_user_name", "user_id", "name"),)


class ServiceRecord(Base, TimestampMixin):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    client: Mapped["Client"] = relationship("Client", back_populates="services")

    __table_args__ = (
        Index("ix_services_user_date", "user_id", "service_date"),
        Index("ix_services_user_client", "user_id", "client_id"),
        CheckConstraint("amount_cents >= 0", name="amount_positive"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[ExpenseType] = mapped_column(EXPENSE_TYPE_ENUM, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "expense_date"),
        CheckConstraint("amount_cents >= 0", name="amount_positive"),
    )
