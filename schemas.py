from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import ExpenseType


# Keeps amounts inside a signed 64-bit column.
MAX_AMOUNT_CENTS = 10**15


class ClientIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    phone: Optional[str] = Field(default=None, max_length=40)


class ServiceIn(BaseModel):
    """A new service job.

    Either ``client_id`` points at an existing client or ``new_client``
    carries the fields for one to be created alongside the service.
    """

    client_id: Optional[int] = None
    new_client: Optional[ClientIn] = None
    description: str = Field(..., min_length=1, max_length=2000)
    amount_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    service_date: date
    location: str = Field(..., min_length=1, max_length=200)
    is_paid: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _one_client_source(self) -> "ServiceIn":
        if (self.client_id is None) == (self.new_client is None):
            raise ValueError("Provide either an existing client or a new client")
        return self


class ServiceUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: Optional[str] = Field(default=None, max_length=2000)
    is_paid: Optional[bool] = None


class ExpenseIn(BaseModel):
    type: ExpenseType
    amount_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    details: str = Field(..., min_length=1, max_length=500)
    expense_date: date
