"""
Transaction service — the append-only transaction log.

This module handles:
  - Appending one Transaction row per money movement
  - Listing transactions for one account or across all of a user's accounts
  - Type and date-range filters, pagination, and counting

Rows are never updated or deleted here. Reads return TransactionView
objects: the stored row plus the decrypted account numbers of internal
counterparts, and the from_display / to_display labels shown to members
("CASH IN", an external sender name, or an account number).

User scoping:
  A transaction belongs to a user when either leg references one of the
  user's accounts. The query joins the accounts table twice (aliased once
  per leg) with outer joins, so external and cash legs are kept.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from bankledger.models.account import Account
from bankledger.models.transaction import (
    CASH_IN_LABEL,
    CASH_OUT_LABEL,
    Transaction,
    TransactionStatus,
)
from bankledger.security import decrypt_value, encrypt_iban


@dataclass
class TransactionView:
    """Read-side presentation of a Transaction with decrypted counterparts."""

    transaction: Transaction
    from_account_number: str | None
    to_account_number: str | None

    @property
    def id(self) -> int:
        return self.transaction.id

    @property
    def type(self) -> str:
        return self.transaction.type

    @property
    def status(self) -> str:
        return self.transaction.status

    @property
    def amount(self) -> Decimal:
        return self.transaction.amount

    @property
    def from_account_id(self) -> int | None:
        return self.transaction.from_account_id

    @property
    def to_account_id(self) -> int | None:
        return self.transaction.to_account_id

    @property
    def external_from_name(self) -> str | None:
        return self.transaction.external_from_name

    @property
    def external_from_iban(self) -> str | None:
        return decrypt_value(self.transaction.external_from_iban)

    @property
    def external_to_name(self) -> str | None:
        return self.transaction.external_to_name

    @property
    def external_to_iban(self) -> str | None:
        return decrypt_value(self.transaction.external_to_iban)

    @property
    def reference(self) -> str | None:
        return self.transaction.reference

    @property
    def timestamp(self) -> datetime:
        return self.transaction.timestamp

    @property
    def from_display(self) -> str | None:
        return self.from_account_number or self.transaction.external_from_name

    @property
    def to_display(self) -> str | None:
        return self.to_account_number or self.transaction.external_to_name


def view_of(
    txn: Transaction,
    from_account: Account | None = None,
    to_account: Account | None = None,
) -> TransactionView:
    """Wrap a freshly recorded row using the account objects the caller already holds."""
    return TransactionView(
        transaction=txn,
        from_account_number=decrypt_value(from_account.account_number) if from_account else None,
        to_account_number=decrypt_value(to_account.account_number) if to_account else None,
    )


async def record_transaction(
    db: AsyncSession,
    txn_type: str,
    amount_cents: int,
    from_account_id: int | None = None,
    to_account_id: int | None = None,
    status: str = TransactionStatus.COMPLETED.value,
    external_from_name: str | None = None,
    external_from_iban: str | None = None,
    external_to_name: str | None = None,
    external_to_iban: str | None = None,
    reference: str | None = None,
) -> Transaction:
    """
    Append a transaction row inside the caller's database transaction.

    A leg with neither an internal account nor an external name is a cash
    leg and gets the "CASH IN" / "CASH OUT" label. External IBANs are
    encrypted before they are written.

    Returns:
        The flushed Transaction (id and timestamp populated).
    """
    if from_account_id is None and not external_from_name:
        external_from_name = CASH_IN_LABEL
    if to_account_id is None and not external_to_name:
        external_to_name = CASH_OUT_LABEL

    txn = Transaction(
        type=txn_type,
        amount_cents=amount_cents,
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        status=status,
        external_from_name=external_from_name,
        external_from_iban=encrypt_iban(external_from_iban) if external_from_iban else None,
        external_to_name=external_to_name,
        external_to_iban=encrypt_iban(external_to_iban) if external_to_iban else None,
        reference=reference,
    )
    db.add(txn)
    await db.flush()
    return txn


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _apply_filters(query, txn_type: str | None, start_date: date | None, end_date: date | None):
    if txn_type:
        query = query.where(Transaction.type == txn_type)
    if start_date:
        query = query.where(Transaction.timestamp >= _day_start(start_date))
    if end_date:
        # end_date is inclusive
        query = query.where(Transaction.timestamp < _day_start(end_date + timedelta(days=1)))
    return query


def _user_scope(from_account, to_account, user_id: int):
    return or_(from_account.user_id == user_id, to_account.user_id == user_id)


async def _fetch_views(db: AsyncSession, query) -> list[TransactionView]:
    result = await db.execute(query)
    return [
        TransactionView(
            transaction=txn,
            from_account_number=decrypt_value(from_number),
            to_account_number=decrypt_value(to_number),
        )
        for txn, from_number, to_number in result.all()
    ]


async def get_account_transactions(
    db: AsyncSession,
    account_id: int,
    txn_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[TransactionView]:
    """
    List transactions where the account is either leg, newest first.

    Ownership is the caller's responsibility (see account_service.get_owned_account).
    """
    from_account = aliased(Account)
    to_account = aliased(Account)

    query = (
        select(Transaction, from_account.account_number, to_account.account_number)
        .outerjoin(from_account, Transaction.from_account_id == from_account.id)
        .outerjoin(to_account, Transaction.to_account_id == to_account.id)
        .where(
            (Transaction.from_account_id == account_id)
            | (Transaction.to_account_id == account_id)
        )
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    query = _apply_filters(query, txn_type, start_date, end_date)
    return await _fetch_views(db, query)


async def get_user_transactions(
    db: AsyncSession,
    user_id: int,
    txn_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[TransactionView]:
    """List transactions touching any of the user's accounts, newest first."""
    from_account = aliased(Account)
    to_account = aliased(Account)

    query = (
        select(Transaction, from_account.account_number, to_account.account_number)
        .outerjoin(from_account, Transaction.from_account_id == from_account.id)
        .outerjoin(to_account, Transaction.to_account_id == to_account.id)
        .where(_user_scope(from_account, to_account, user_id))
        .order_by(Transaction.timestamp.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    query = _apply_filters(query, txn_type, start_date, end_date)
    return await _fetch_views(db, query)


async def count_user_transactions(
    db: AsyncSession,
    user_id: int,
    txn_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> int:
    from_account = aliased(Account)
    to_account = aliased(Account)

    query = (
        select(func.count(Transaction.id))
        .select_from(Transaction)
        .outerjoin(from_account, Transaction.from_account_id == from_account.id)
        .outerjoin(to_account, Transaction.to_account_id == to_account.id)
        .where(_user_scope(from_account, to_account, user_id))
    )
    query = _apply_filters(query, txn_type, start_date, end_date)
    result = await db.execute(query)
    return result.scalar_one()
