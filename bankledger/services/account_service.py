"""
Account service — the ledger store for bank accounts.

This module handles:
  - Account creation with freshly generated, encrypted identifiers
  - Account retrieval by id, owner, account number or IBAN
  - Atomic balance adjustment (the only way a balance changes)
  - Hard deletion of a zero-balance account
  - Reconciliation of the stored balance against the transaction log

Identifiers at rest:
  account_number and iban are written encrypted, next to a SHA-256 hash of
  the normalized plaintext. Lookups hash the input and match on the hash
  column; the ORM objects keep the ciphertext and callers decrypt through
  the response views (see schemas/account.py).

Ownership enforcement:
  get_owned_account() distinguishes "does not exist" (404) from "belongs to
  someone else" (403). All member-facing reads and mutations go through it.

Concurrency:
  Rows are read with SELECT ... FOR UPDATE (a no-op on SQLite) and refreshed
  from the database. adjust_balance() issues a single conditional UPDATE,
  so two concurrent debits can never both pass the funds check.
"""

import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from bankledger.exceptions import (
    AccessDeniedError,
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidOperationError,
)
from bankledger.identifiers import generate_account_number, generate_iban, mask_account_number
from bankledger.models.account import Account, AccountType
from bankledger.models.transaction import Transaction, TransactionStatus
from bankledger.money import MAX_BALANCE_CENTS
from bankledger.security import encrypt_account_number, encrypt_iban, hash_identifier

logger = logging.getLogger(__name__)

_MAX_IDENTIFIER_ATTEMPTS = 10


async def create_account(
    db: AsyncSession,
    user_id: int,
    account_type: str = AccountType.CHECKING.value,
) -> Account:
    """
    Create a new bank account with a zero balance.

    Generates an account number and a matching IBAN, retrying if either hash
    is already taken (practically never with 48 random bits).

    Args:
        db: Database session.
        user_id: The owner.
        account_type: "checking", "savings" or "business".

    Returns:
        The newly created Account instance.
    """
    for _ in range(_MAX_IDENTIFIER_ATTEMPTS):
        account_number = generate_account_number()
        iban = generate_iban(account_number)
        number_hash = hash_identifier(account_number)
        iban_hash = hash_identifier(iban)

        existing = await db.execute(
            select(Account.id).where(
                (Account.account_number_hash == number_hash) | (Account.iban_hash == iban_hash)
            )
        )
        if existing.first() is None:
            break
    else:
        raise RuntimeError("Failed to generate a unique account number")

    account = Account(
        user_id=user_id,
        account_type=AccountType(account_type).value,
        account_number=encrypt_account_number(account_number),
        account_number_hash=number_hash,
        iban=encrypt_iban(iban),
        iban_hash=iban_hash,
        balance_cents=0,
    )
    db.add(account)
    await db.flush()

    logger.info(
        "Created %s account %s (%s) for user %s",
        account.account_type, account.id, mask_account_number(account_number), user_id,
    )
    return account


async def get_account(
    db: AsyncSession,
    account_id: int,
    for_update: bool = False,
) -> Account:
    """
    Load an account by id without an ownership check.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
    """
    query = select(Account).where(Account.id == account_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(query)
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


async def get_owned_account(
    db: AsyncSession,
    account_id: int,
    user_id: int,
    for_update: bool = False,
) -> Account:
    """
    Load an account and verify that user_id owns it.

    Raises:
        AccountNotFoundError: If the account doesn't exist.
        AccessDeniedError: If the account belongs to someone else.
    """
    account = await get_account(db, account_id, for_update=for_update)
    if account.user_id != user_id:
        raise AccessDeniedError("You do not have access to this account")
    return account


async def get_accounts(db: AsyncSession, user_id: int) -> list[Account]:
    """List all accounts owned by a user, newest first."""
    result = await db.execute(
        select(Account)
        .where(Account.user_id == user_id)
        .order_by(Account.created_at.desc(), Account.id.desc())
    )
    return list(result.scalars().all())


async def find_by_account_number(db: AsyncSession, account_number: str) -> Account | None:
    if not account_number or not account_number.strip():
        return None
    result = await db.execute(
        select(Account).where(Account.account_number_hash == hash_identifier(account_number))
    )
    return result.scalar_one_or_none()


async def find_by_iban(
    db: AsyncSession,
    iban: str,
    for_update: bool = False,
) -> Account | None:
    if not iban or not iban.strip():
        return None
    query = select(Account).where(Account.iban_hash == hash_identifier(iban))
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def adjust_balance(db: AsyncSession, account: Account, delta_cents: int) -> int:
    """
    Atomically add delta_cents (negative for a debit) to an account balance.

    The UPDATE carries its own bound check in the direction of travel:

        UPDATE accounts SET balance_cents = balance_cents + :delta
        WHERE id = :id AND balance_cents >= -:delta            -- debit
        WHERE id = :id AND balance_cents <= :max - :delta      -- credit

    Zero affected rows on a debit means a concurrent movement got there
    first, and InsufficientFundsError is raised. On a credit it means the
    balance would pass MAX_BALANCE_CENTS, and InvalidOperationError is raised.

    Returns:
        The new balance in cents (also written back onto `account`).
    """
    stmt = update(Account).where(Account.id == account.id)
    if delta_cents < 0:
        stmt = stmt.where(Account.balance_cents >= -delta_cents)
    else:
        stmt = stmt.where(Account.balance_cents <= MAX_BALANCE_CENTS - delta_cents)
    stmt = stmt.values(balance_cents=Account.balance_cents + delta_cents).execution_options(
        synchronize_session=False
    )

    result = await db.execute(stmt)
    if result.rowcount == 0:
        current = await db.scalar(select(Account.balance_cents).where(Account.id == account.id))
        if current is None:
            raise AccountNotFoundError(account.id)
        if delta_cents >= 0:
            logger.warning("Credit of %s cents refused on account %s: balance limit", delta_cents, account.id)
            raise InvalidOperationError("Balance would exceed the maximum supported amount")
        raise InsufficientFundsError(
            account_id=account.id,
            requested_cents=-delta_cents,
            available_cents=current,
        )

    new_balance = await db.scalar(select(Account.balance_cents).where(Account.id == account.id))
    set_committed_value(account, "balance_cents", new_balance)
    return new_balance


async def delete_account(db: AsyncSession, account: Account) -> None:
    """
    Hard-delete an account whose balance is zero.

    Raises:
        InvalidOperationError: If the balance is not zero at delete time.
    """
    result = await db.execute(
        delete(Account)
        .where(Account.id == account.id)
        .where(Account.balance_cents == 0)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidOperationError("Account still holds funds and cannot be deleted")
    db.expunge(account)
    logger.info("Deleted account %s", account.id)


async def compute_balance_from_transactions(db: AsyncSession, account_id: int) -> int:
    """
    Recompute a balance from the transaction log: credits in minus debits out.

    This is the integrity-check counterpart to Account.balance_cents.
    """
    credit_result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .where(Transaction.to_account_id == account_id)
        .where(Transaction.status == TransactionStatus.COMPLETED.value)
    )
    total_credits = credit_result.scalar()

    debit_result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .where(Transaction.from_account_id == account_id)
        .where(Transaction.status == TransactionStatus.COMPLETED.value)
    )
    total_debits = debit_result.scalar()

    return total_credits - total_debits


async def get_balance(db: AsyncSession, account_id: int, user_id: int) -> dict:
    """
    Get the stored balance together with the balance recomputed from the log.

    A mismatch signals a data integrity issue.
    """
    account = await get_owned_account(db, account_id, user_id)
    computed_balance_cents = await compute_balance_from_transactions(db, account_id)

    return {
        "account": account,
        "balance_cents": account.balance_cents,
        "computed_balance_cents": computed_balance_cents,
        "match": account.balance_cents == computed_balance_cents,
    }
