"""
Scheduled payment service — standing orders and their executor.

This module handles:
  - Creating a scheduled payment from one of the caller's accounts
  - Listing a user's scheduled payments with the source account number
  - Cancelling (deleting) a payment, scoped to its owner
  - Executing due payments through the movement service

Execution contract:
  A payment is due when status = "scheduled" and next_run <= today.
  Each due payment runs in its OWN session and database transaction, so
  one failure never rolls back another payment's money movement.

    payee IBAN matches an internal account  -> movement_service.transfer
    otherwise                               -> movement_service.external_outgoing

  Success: next_run advances by the frequency (calendar-aware, so a
  monthly payment started on Jan 31 runs on Feb 28/29), and a "once"
  payment becomes "completed" with next_run cleared.
  Failure (insufficient funds, same account, ...): the movement is rolled
  back, and the payment is marked "failed" with the error message.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bankledger.exceptions import BankAPIError, ScheduledPaymentNotFoundError
from bankledger.models.account import Account
from bankledger.models.scheduled_payment import Frequency, ScheduledPayment, ScheduledPaymentStatus
from bankledger.money import cents_to_decimal
from bankledger.security import decrypt_value, encrypt_iban, hash_identifier
from bankledger.services import account_service, movement_service

logger = logging.getLogger(__name__)

FREQUENCY_STEPS = {
    Frequency.WEEKLY.value: relativedelta(weeks=1),
    Frequency.BIWEEKLY.value: relativedelta(weeks=2),
    Frequency.MONTHLY.value: relativedelta(months=1),
    Frequency.QUARTERLY.value: relativedelta(months=3),
    Frequency.YEARLY.value: relativedelta(years=1),
}


@dataclass
class ScheduledPaymentView:
    """A scheduled payment with its payee IBAN and source account number decrypted."""

    payment: ScheduledPayment
    payee_iban: str | None
    account_number: str | None

    @property
    def id(self) -> int:
        return self.payment.id

    @property
    def account_id(self) -> int:
        return self.payment.account_id

    @property
    def payee_name(self) -> str:
        return self.payment.payee_name

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.payment.amount_cents)

    @property
    def frequency(self) -> str:
        return self.payment.frequency

    @property
    def start_date(self) -> date:
        return self.payment.start_date

    @property
    def next_run(self) -> date | None:
        return self.payment.next_run

    @property
    def notes(self) -> str | None:
        return self.payment.notes

    @property
    def status(self) -> str:
        return self.payment.status

    @property
    def last_run_at(self) -> datetime | None:
        return self.payment.last_run_at

    @property
    def last_error(self) -> str | None:
        return self.payment.last_error

    @property
    def created_at(self) -> datetime:
        return self.payment.created_at


@dataclass
class ExecutionOutcome:
    payment_id: int
    succeeded: bool
    transaction_id: int | None = None
    error: str | None = None


def next_run_after(current: date, frequency: str, start_date: date | None = None) -> date | None:
    """
    The run date that follows `current`, or None for a one-off payment.

    Steps are measured from start_date when given, so a monthly payment
    started on the 31st returns to the 31st in months that have one.
    """
    if frequency == Frequency.ONCE.value:
        return None
    step = FREQUENCY_STEPS[frequency]
    if start_date is None:
        return current + step

    n = 1
    candidate = start_date + step
    while candidate <= current:
        n += 1
        candidate = start_date + step * n
    return candidate


# ---------------------------------------------------------------------------
# Member operations
# ---------------------------------------------------------------------------

async def create_scheduled_payment(
    db: AsyncSession,
    user_id: int,
    account_id: int,
    payee_name: str,
    payee_iban: str,
    amount_cents: int,
    frequency: str,
    start_date: date,
    notes: str | None = None,
) -> ScheduledPaymentView:
    """
    Create a scheduled payment; next_run starts at start_date.

    Raises:
        AccountNotFoundError / AccessDeniedError: Unknown or foreign source account.
    """
    account = await account_service.get_owned_account(db, account_id, user_id)

    payment = ScheduledPayment(
        user_id=user_id,
        account_id=account.id,
        payee_name=payee_name,
        payee_iban=encrypt_iban(payee_iban),
        payee_iban_hash=hash_identifier(payee_iban),
        amount_cents=amount_cents,
        frequency=Frequency(frequency).value,
        start_date=start_date,
        next_run=start_date,
        notes=notes,
        status=ScheduledPaymentStatus.SCHEDULED.value,
    )
    db.add(payment)
    await db.flush()

    logger.info("Created scheduled payment %s from account %s", payment.id, account.id)
    return ScheduledPaymentView(
        payment=payment,
        payee_iban=decrypt_value(payment.payee_iban),
        account_number=decrypt_value(account.account_number),
    )


async def get_scheduled_payments(db: AsyncSession, user_id: int) -> list[ScheduledPaymentView]:
    """List the user's scheduled payments, soonest next_run first."""
    result = await db.execute(
        select(ScheduledPayment, Account.account_number)
        .join(Account, ScheduledPayment.account_id == Account.id)
        .where(ScheduledPayment.user_id == user_id)
        .order_by(ScheduledPayment.next_run.asc(), ScheduledPayment.id.asc())
    )
    return [
        ScheduledPaymentView(
            payment=payment,
            payee_iban=decrypt_value(payment.payee_iban),
            account_number=decrypt_value(account_number),
        )
        for payment, account_number in result.all()
    ]


async def delete_scheduled_payment(db: AsyncSession, payment_id: int, user_id: int) -> ScheduledPaymentView:
    """
    Cancel a scheduled payment owned by user_id.

    Raises:
        ScheduledPaymentNotFoundError: No payment with this id belongs to the user.
    """
    result = await db.execute(
        select(ScheduledPayment, Account.account_number)
        .join(Account, ScheduledPayment.account_id == Account.id)
        .where(ScheduledPayment.id == payment_id)
        .where(ScheduledPayment.user_id == user_id)
    )
    row = result.first()
    if row is None:
        raise ScheduledPaymentNotFoundError(payment_id)

    payment, account_number = row
    view = ScheduledPaymentView(
        payment=payment,
        payee_iban=decrypt_value(payment.payee_iban),
        account_number=decrypt_value(account_number),
    )
    await db.execute(
        delete(ScheduledPayment)
        .where(ScheduledPayment.id == payment_id)
        .where(ScheduledPayment.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    db.expunge(payment)

    logger.info("Deleted scheduled payment %s", payment_id)
    return view


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

async def get_due_payment_ids(db: AsyncSession, today: date) -> list[int]:
    result = await db.execute(
        select(ScheduledPayment.id)
        .where(ScheduledPayment.status == ScheduledPaymentStatus.SCHEDULED.value)
        .where(ScheduledPayment.next_run.is_not(None))
        .where(ScheduledPayment.next_run <= today)
        .order_by(ScheduledPayment.next_run.asc(), ScheduledPayment.id.asc())
    )
    return list(result.scalars().all())


async def execute_payment(db: AsyncSession, payment: ScheduledPayment, today: date):
    """
    Move the money for one due payment and advance its schedule.

    Raises whatever the movement service raises; the caller owns the transaction.
    """
    payee_iban = decrypt_value(payment.payee_iban)
    reference = payment.notes or f"Scheduled payment #{payment.id}"

    internal = await account_service.find_by_iban(db, payee_iban) if payee_iban else None
    if internal is not None:
        result = await movement_service.transfer(
            db,
            payment.account_id,
            internal.id,
            payment.amount_cents,
            user_id=payment.user_id,
            reference=reference,
        )
    else:
        result = await movement_service.external_outgoing(
            db,
            payment.account_id,
            payment.user_id,
            payment.payee_name,
            payee_iban,
            payment.amount_cents,
            reference=reference,
        )

    payment.last_run_at = datetime.now(timezone.utc)
    payment.last_error = None
    payment.next_run = next_run_after(payment.next_run, payment.frequency, payment.start_date)
    if payment.next_run is None:
        payment.status = ScheduledPaymentStatus.COMPLETED.value
    await db.flush()
    return result


async def _mark_failed(session_factory: async_sessionmaker, payment_id: int, error: str) -> None:
    async with session_factory() as db:
        payment = await db.get(ScheduledPayment, payment_id)
        if payment is None:
            return
        payment.status = ScheduledPaymentStatus.FAILED.value
        payment.last_run_at = datetime.now(timezone.utc)
        payment.last_error = error[:255]
        await db.commit()


async def run_due_payments(
    session_factory: async_sessionmaker,
    today: date | None = None,
) -> list[ExecutionOutcome]:
    """
    Execute every payment due on or before `today` (default: current UTC date).

    Returns:
        One ExecutionOutcome per payment attempted.
    """
    today = today or datetime.now(timezone.utc).date()

    async with session_factory() as db:
        due_ids = await get_due_payment_ids(db, today)

    outcomes: list[ExecutionOutcome] = []
    for payment_id in due_ids:
        async with session_factory() as db:
            try:
                payment = await db.get(ScheduledPayment, payment_id, with_for_update=True)
                if (
                    payment is None
                    or payment.status != ScheduledPaymentStatus.SCHEDULED.value
                    or payment.next_run is None
                    or payment.next_run > today
                ):
                    continue
                result = await execute_payment(db, payment, today)
                transaction_id = result.transaction.id
                await db.commit()
            except BankAPIError as exc:
                await db.rollback()
                logger.warning("Scheduled payment %s failed: %s", payment_id, exc.detail)
                outcomes.append(ExecutionOutcome(payment_id=payment_id, succeeded=False, error=exc.detail))
                await _mark_failed(session_factory, payment_id, exc.detail)
                continue

        logger.info("Scheduled payment %s executed as transaction %s", payment_id, transaction_id)
        outcomes.append(
            ExecutionOutcome(payment_id=payment_id, succeeded=True, transaction_id=transaction_id)
        )

    return outcomes
