"""
Movement service — the money-movement engine.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. It handles:
  - Deposits and withdrawals (cash legs)
  - Transfers between two internal accounts
  - External incoming and outgoing payments (simulated interbank rail)
  - The fund sweep that precedes closing an account

Every operation validates, mutates balance(s) and appends exactly one
transaction row inside the caller's database transaction. Nothing is
written before the last validation passes, and the request-scoped session
rolls back on any exception, so a rejected movement leaves no trace.

Atomicity and races:
  Accounts are loaded with SELECT ... FOR UPDATE. The balance write itself
  is a conditional UPDATE (account_service.adjust_balance), so even on
  SQLite, where FOR UPDATE is a no-op, two concurrent debits cannot both
  pass the funds check.

Deadlock prevention:
  A transfer locks and updates its two accounts in ascending id order,
  so opposite-direction transfers between the same pair never wait on
  each other in a cycle.

Boundary:
  Only `balance < amount` is rejected. An amount equal to the balance is a
  legal full withdrawal or transfer.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from bankledger.exceptions import (
    AccessDeniedError,
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidOperationError,
    SameAccountTransferError,
)
from bankledger.models.account import Account
from bankledger.models.transaction import TransactionType
from bankledger.money import cents_to_decimal
from bankledger.services import account_service
from bankledger.services.transaction_service import TransactionView, record_transaction, view_of

logger = logging.getLogger(__name__)

CLOSURE_SWEEP_REFERENCE = "Balance transfer before account closure"


@dataclass
class MovementResult:
    """The logged transaction plus the post-movement balance of each touched account."""

    transaction: TransactionView
    balances: dict[int, int] = field(default_factory=dict)

    def balance_of(self, account_id: int) -> Decimal:
        return cents_to_decimal(self.balances[account_id])


@dataclass
class ClosureResult:
    account_id: int
    transferred_cents: int = 0
    transfer_account_id: int | None = None
    transaction: TransactionView | None = None


def _require_positive(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise InvalidOperationError("Amount must be greater than zero")


def _require_funds(account: Account, amount_cents: int) -> None:
    if account.balance_cents < amount_cents:
        raise InsufficientFundsError(
            account_id=account.id,
            requested_cents=amount_cents,
            available_cents=account.balance_cents,
        )


async def deposit(
    db: AsyncSession,
    account_id: int,
    user_id: int,
    amount_cents: int,
    reference: str | None = None,
) -> MovementResult:
    """
    Credit cash into one of the caller's accounts.

    Raises:
        InvalidOperationError: Non-positive amount.
        AccountNotFoundError / AccessDeniedError: Unknown or foreign account.
    """
    _require_positive(amount_cents)
    account = await account_service.get_owned_account(db, account_id, user_id, for_update=True)

    new_balance = await account_service.adjust_balance(db, account, amount_cents)
    txn = await record_transaction(
        db,
        TransactionType.DEPOSIT.value,
        amount_cents,
        to_account_id=account.id,
        reference=reference,
    )

    logger.info("deposit account=%s amount_cents=%s txn=%s", account.id, amount_cents, txn.id)
    view = view_of(txn, to_account=account)
    return MovementResult(transaction=view, balances={account.id: new_balance})


async def withdraw(
    db: AsyncSession,
    account_id: int,
    user_id: int,
    amount_cents: int,
    reference: str | None = None,
) -> MovementResult:
    """
    Debit cash from one of the caller's accounts.

    Raises:
        InsufficientFundsError: If balance < amount. Nothing is written.
    """
    _require_positive(amount_cents)
    account = await account_service.get_owned_account(db, account_id, user_id, for_update=True)
    _require_funds(account, amount_cents)

    new_balance = await account_service.adjust_balance(db, account, -amount_cents)
    txn = await record_transaction(
        db,
        TransactionType.WITHDRAWAL.value,
        amount_cents,
        from_account_id=account.id,
        reference=reference,
    )

    logger.info("withdrawal account=%s amount_cents=%s txn=%s", account.id, amount_cents, txn.id)
    view = view_of(txn, from_account=account)
    return MovementResult(transaction=view, balances={account.id: new_balance})


async def transfer(
    db: AsyncSession,
    from_account_id: int,
    to_account_id: int,
    amount_cents: int,
    user_id: int | None,
    reference: str | None = None,
) -> MovementResult:
    """
    Move funds between two internal accounts and log a single row.

    The destination may belong to anyone. The source must belong to
    user_id; passing user_id=None skips that check and is reserved for
    internal callers (the closure sweep).

    Raises:
        SameAccountTransferError: from and to are the same account (checked first,
            before the amount).
        InvalidOperationError: Non-positive amount.
        AccountNotFoundError: Either account is missing.
        AccessDeniedError: Caller doesn't own the source.
        InsufficientFundsError: Source balance below amount.
    """
    if from_account_id == to_account_id:
        raise SameAccountTransferError()
    _require_positive(amount_cents)

    # Lock in ascending id order
    locked: dict[int, Account] = {}
    for account_id in sorted((from_account_id, to_account_id)):
        locked[account_id] = await account_service.get_account(db, account_id, for_update=True)

    source = locked[from_account_id]
    if user_id is not None and source.user_id != user_id:
        raise AccessDeniedError("You do not have access to the source account")
    _require_funds(source, amount_cents)

    deltas = {from_account_id: -amount_cents, to_account_id: amount_cents}
    balances: dict[int, int] = {}
    for account_id in sorted(deltas):
        balances[account_id] = await account_service.adjust_balance(
            db, locked[account_id], deltas[account_id]
        )

    txn = await record_transaction(
        db,
        TransactionType.TRANSFER.value,
        amount_cents,
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        reference=reference,
    )

    logger.info(
        "transfer from=%s to=%s amount_cents=%s txn=%s",
        from_account_id, to_account_id, amount_cents, txn.id,
    )
    view = view_of(txn, from_account=source, to_account=locked[to_account_id])
    return MovementResult(transaction=view, balances=balances)


async def external_incoming(
    db: AsyncSession,
    iban: str,
    sender_name: str,
    sender_iban: str,
    amount_cents: int,
    reference: str | None = None,
) -> MovementResult:
    """
    Credit an account identified by IBAN with money from outside the ledger.

    Authenticated by the shared API key at the HTTP boundary, not by a user.

    Raises:
        AccountNotFoundError: No account has this IBAN.
    """
    _require_positive(amount_cents)
    account = await account_service.find_by_iban(db, iban, for_update=True)
    if account is None:
        raise AccountNotFoundError(detail="Destination account not found for provided IBAN")

    new_balance = await account_service.adjust_balance(db, account, amount_cents)
    txn = await record_transaction(
        db,
        TransactionType.EXTERNAL_INCOMING.value,
        amount_cents,
        to_account_id=account.id,
        external_from_name=sender_name,
        external_from_iban=sender_iban,
        reference=reference,
    )

    logger.info("external_incoming account=%s amount_cents=%s txn=%s", account.id, amount_cents, txn.id)
    view = view_of(txn, to_account=account)
    return MovementResult(transaction=view, balances={account.id: new_balance})


async def external_outgoing(
    db: AsyncSession,
    from_account_id: int,
    user_id: int,
    recipient_name: str,
    recipient_iban: str,
    amount_cents: int,
    reference: str | None = None,
) -> MovementResult:
    """
    Debit one of the caller's accounts towards a recipient outside the ledger.

    Raises:
        AccountNotFoundError / AccessDeniedError: Unknown or foreign source.
        InsufficientFundsError: Source balance below amount.
    """
    _require_positive(amount_cents)
    account = await account_service.get_owned_account(db, from_account_id, user_id, for_update=True)
    _require_funds(account, amount_cents)

    new_balance = await account_service.adjust_balance(db, account, -amount_cents)
    txn = await record_transaction(
        db,
        TransactionType.EXTERNAL_OUTGOING.value,
        amount_cents,
        from_account_id=account.id,
        external_to_name=recipient_name,
        external_to_iban=recipient_iban,
        reference=reference,
    )

    logger.info("external_outgoing account=%s amount_cents=%s txn=%s", account.id, amount_cents, txn.id)
    view = view_of(txn, from_account=account)
    return MovementResult(transaction=view, balances={account.id: new_balance})


async def close_account(
    db: AsyncSession,
    account_id: int,
    user_id: int,
    transfer_account_id: int | None = None,
) -> ClosureResult:
    """
    Close an account, sweeping any remaining balance to another of the caller's accounts.

    An account with a zero balance is deleted directly. Otherwise the full
    balance is transferred to transfer_account_id (one transfer row with
    reference "Balance transfer before account closure") and the emptied
    account is deleted in the same database transaction.

    Raises:
        InvalidOperationError: Balance remains and no destination was given,
            or the destination is the account being closed.
        AccessDeniedError: Destination missing or owned by someone else.
    """
    account = await account_service.get_owned_account(db, account_id, user_id, for_update=True)
    result = ClosureResult(account_id=account.id)

    if account.balance_cents > 0:
        if transfer_account_id is None:
            raise InvalidOperationError(
                "Account has a remaining balance. Provide transfer_account_id to move the funds before closing."
            )
        if transfer_account_id == account.id:
            raise InvalidOperationError("Cannot transfer the remaining balance to the account being closed")

        try:
            destination = await account_service.get_account(db, transfer_account_id)
        except AccountNotFoundError:
            destination = None
        if destination is None or destination.user_id != user_id:
            raise AccessDeniedError("Destination account not found or inaccessible")

        sweep = await transfer(
            db,
            account.id,
            destination.id,
            account.balance_cents,
            user_id=None,
            reference=CLOSURE_SWEEP_REFERENCE,
        )
        result.transferred_cents = sweep.transaction.transaction.amount_cents
        result.transfer_account_id = destination.id
        result.transaction = sweep.transaction

    await account_service.delete_account(db, account)
    logger.info(
        "closed account=%s swept_cents=%s to=%s",
        account_id, result.transferred_cents, result.transfer_account_id,
    )
    return result
