"""Pydantic schemas for scheduled payment endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from bankledger.schemas.transaction import Amount


class ScheduledPaymentCreateRequest(BaseModel):
    """Request body for POST /scheduled-payments."""
    account_id: int
    payee_name: str = Field(min_length=1, max_length=255)
    payee_iban: str = Field(min_length=5, max_length=64)
    amount: Amount
    frequency: Literal["once", "weekly", "biweekly", "monthly", "quarterly", "yearly"]
    start_date: date
    notes: str | None = Field(default=None, max_length=500)


class ScheduledPaymentResponse(BaseModel):
    id: int
    account_id: int
    account_number: str | None
    payee_name: str
    payee_iban: str | None
    amount: Decimal
    frequency: str
    start_date: date
    next_run: date | None
    notes: str | None
    status: str
    last_run_at: datetime | None
    last_error: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
