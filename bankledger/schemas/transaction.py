"""
Pydantic schemas for Transaction and money-movement endpoints.

Amounts are positive decimals with at most two fractional digits
(e.g. 10.50) and no larger than MAX_AMOUNT. Zero, negative, oversized and
over-precise amounts are rejected with 400 before any service code runs.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, Field

from bankledger.money import MAX_AMOUNT

Amount = Annotated[Decimal, Field(gt=0, le=MAX_AMOUNT, max_digits=14, decimal_places=2)]


class DepositRequest(BaseModel):
    """Request body for POST /transactions/deposit."""
    account_id: int
    amount: Amount
    reference: str | None = Field(default=None, max_length=255)


class WithdrawRequest(BaseModel):
    """Request body for POST /transactions/withdraw."""
    account_id: int
    amount: Amount
    reference: str | None = Field(default=None, max_length=255)


class TransferRequest(BaseModel):
    """Request body for POST /transactions/transfer."""
    from_account_id: int
    to_account_id: int
    amount: Amount
    reference: str | None = Field(default=None, max_length=255)


class ExternalOutgoingRequest(BaseModel):
    """Request body for POST /transactions/external/outgoing."""
    from_account_id: int
    recipient_name: str = Field(min_length=1, max_length=255)
    recipient_iban: str = Field(min_length=5, max_length=64)
    amount: Amount
    reference: str | None = Field(default=None, max_length=255)


class ExternalIncomingRequest(BaseModel):
    """Request body for POST /transactions/external/incoming (API-key authenticated)."""
    iban: str = Field(min_length=5, max_length=64)
    sender_name: str = Field(min_length=1, max_length=255)
    sender_iban: str = Field(min_length=5, max_length=64)
    amount: Amount
    reference: str | None = Field(default=None, max_length=255)


class TransactionResponse(BaseModel):
    """
    Public representation of a transaction.

    from_display / to_display name each side for people: the counterpart
    account number for internal legs, otherwise the external name
    ("CASH IN", "CASH OUT", sender or recipient).

    The external_* fields are null on internal legs. external_incoming rows
    always carry the sender name and IBAN; external_outgoing rows always
    carry the recipient name and IBAN.
    """
    id: int
    type: str
    status: str
    amount: Decimal
    from_account_id: int | None
    to_account_id: int | None
    from_account_number: str | None
    to_account_number: str | None
    external_from_name: str | None
    external_from_iban: str | None
    external_to_name: str | None
    external_to_iban: str | None
    from_display: str | None
    to_display: str | None
    reference: str | None
    timestamp: datetime

    model_config = {"from_attributes": True}


class MovementResponse(BaseModel):
    """Response body for single-account movements."""
    message: str
    transaction: TransactionResponse
    new_balance: Decimal


class TransferResponse(BaseModel):
    """Response body for a successful transfer."""
    message: str
    transaction: TransactionResponse
    from_balance: Decimal
    to_balance: Decimal


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionPage(BaseModel):
    transactions: list[TransactionResponse]
    pagination: Pagination


class AccountBalanceResponse(BaseModel):
    account_id: int
    balance: Decimal
