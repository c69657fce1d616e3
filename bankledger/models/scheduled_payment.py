"""
ScheduledPayment model — a durable definition of a future or recurring payment.

The user chooses a source account, a payee (name + IBAN), an amount, a
frequency and a start date. next_run starts at start_date. The executor in
services/scheduled_payment_service.py picks up rows with
status = "scheduled" and next_run <= today, moves the money, then either
advances next_run by the frequency or marks a one-off payment "completed".
A payment whose movement is rejected is marked "failed".

payee_iban is encrypted at rest; payee_iban_hash allows lookups.
"""

import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, BigInteger, Date, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bankledger.database import Base
from bankledger.money import cents_to_decimal


class Frequency(str, enum.Enum):
    ONCE = "once"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ScheduledPaymentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    FAILED = "failed"


class ScheduledPayment(Base):
    __tablename__ = "scheduled_payments"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_scheduled_payments_positive_amount"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Closing the source account cancels its standing orders
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payee_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Encrypted (IBAN:: prefix)
    payee_iban: Mapped[str] = mapped_column(String(255), nullable=False)
    payee_iban_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    frequency: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Date-only; None once nothing is left to run
    next_run: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ScheduledPaymentStatus.SCHEDULED.value,
    )

    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)
