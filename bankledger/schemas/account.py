"""
Pydantic schemas for Account endpoints.

These schemas define the API contract for account creation, retrieval,
balance checking and closure. Amounts are two-place decimals (serialized
as strings, e.g. "1000.00"); the database keeps integer cents.

Account numbers and IBANs are decrypted only here, at the response
boundary. The ORM objects carry ciphertext.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from bankledger.identifiers import format_iban
from bankledger.models.account import Account
from bankledger.money import cents_to_decimal
from bankledger.security import decrypt_value


class AccountCreateRequest(BaseModel):
    """Request body for POST /accounts."""
    account_type: Literal["checking", "savings", "business"] = Field(
        default="checking",
        description="Type of bank account to create",
    )


class AccountResponse(BaseModel):
    """Public representation of a bank account."""
    id: int
    user_id: int
    account_type: str
    account_number: str | None
    iban: str | None
    iban_formatted: str | None
    balance: Decimal
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        iban = decrypt_value(account.iban)
        return cls(
            id=account.id,
            user_id=account.user_id,
            account_type=account.account_type,
            account_number=decrypt_value(account.account_number),
            iban=iban,
            iban_formatted=format_iban(iban) if iban else None,
            balance=account.balance,
            created_at=account.created_at,
        )


class BalanceResponse(BaseModel):
    """
    Balance check response — includes both stored and computed values.

    The `match` field indicates whether the stored balance agrees with
    the balance computed from the transaction log. A mismatch would
    indicate a data integrity issue.
    """
    account_id: int
    balance: Decimal
    computed_balance: Decimal
    match: bool

    @classmethod
    def from_result(cls, result: dict) -> "BalanceResponse":
        return cls(
            account_id=result["account"].id,
            balance=cents_to_decimal(result["balance_cents"]),
            computed_balance=cents_to_decimal(result["computed_balance_cents"]),
            match=result["match"],
        )


class AccountClosureResponse(BaseModel):
    """Response body for DELETE /accounts/{id}."""
    message: str
    account_id: int
    transferred_amount: Decimal
    transfer_account_id: int | None
    transaction_id: int | None
