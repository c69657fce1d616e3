"""
Transaction model — the append-only audit log of balance-affecting events.

One row per movement. The two sides of a movement are described by
from_account_id / to_account_id for internal accounts and by the
external_* columns for counterparties outside the ledger:

  type               from side                  to side
  -----------------  -------------------------  -------------------------
  deposit            external_from_name=CASH IN  to_account_id
  withdrawal         from_account_id            external_to_name=CASH OUT
  transfer           from_account_id            to_account_id
  external_incoming  external_from_name/iban    to_account_id
  external_outgoing  from_account_id            external_to_name/iban

amount_cents is always positive; the direction comes from which side the
account sits on. Rows are never updated or deleted by the application.
Account foreign keys use ON DELETE SET NULL so history survives account
closure. External IBANs are encrypted at rest like account IBANs.
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, BigInteger, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bankledger.database import Base
from bankledger.money import cents_to_decimal


class TransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    EXTERNAL_INCOMING = "external_incoming"
    EXTERNAL_OUTGOING = "external_outgoing"


class TransactionStatus(str, enum.Enum):
    COMPLETED = "completed"
    # Reserved for asynchronous settlement flows
    PENDING = "pending"


CASH_IN_LABEL = "CASH IN"
CASH_OUT_LABEL = "CASH OUT"


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    from_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    to_account_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.COMPLETED.value,
    )

    external_from_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_from_iban: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_to_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_to_iban: Mapped[str | None] = mapped_column(String(255), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Indexed for date-range filters
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)
