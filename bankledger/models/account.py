"""
Account model — a single-currency balance bucket owned by one User.

Identifiers:
  account_number and iban are stored ENCRYPTED (random nonce, so the same
  value encrypts differently every time). Equality lookups and uniqueness
  go through the *_hash columns, which hold a SHA-256 digest of the
  normalized plaintext and carry the UNIQUE constraints.

Balance:
  balance_cents is an integer number of cents and the single source of
  truth for the current balance. It changes only through the movement
  service, which uses conditional UPDATE statements. The CHECK constraint
  is the last line of defense against a negative balance.

Deletion:
  Rows are hard-deleted after the balance has been swept to zero.
  Transactions keep their history through ON DELETE SET NULL.
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, BigInteger, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankledger.database import Base
from bankledger.money import cents_to_decimal


class AccountType(str, enum.Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    BUSINESS = "business"


class Account(Base):
    __tablename__ = "accounts"

    __table_args__ = (
        CheckConstraint(
            "balance_cents >= 0",
            name="ck_accounts_non_negative_balance",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Encrypted (ENC:: prefix)
    account_number: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    account_number_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )

    # Encrypted (IBAN:: prefix)
    iban: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    iban_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )

    balance_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    account_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AccountType.CHECKING.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    user: Mapped["User"] = relationship(
        back_populates="accounts",
    )

    @property
    def balance(self) -> Decimal:
        return cents_to_decimal(self.balance_cents)
