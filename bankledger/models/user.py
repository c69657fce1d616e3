"""
User model — the authentication identity that owns accounts.

Two-factor state lives on the user row:
  - two_factor_secret: the TOTP secret, encrypted at rest (SEC:: prefix).
    Set on the first setup attempt, rotated by regenerate, cleared on disable.
  - two_factor_enabled: True only after the first successful code during setup.
  - two_factor_verified_at: when setup was completed.

The password is stored as an Argon2id hash, never in plaintext.
"""

from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankledger.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    username: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
    )

    # Email is the login identifier — unique and indexed for fast lookups
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    two_factor_secret: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    two_factor_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    two_factor_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    # passive_deletes lets the database cascade run instead of ORM-side deletes
    accounts: Mapped[list["Account"]] = relationship(
        back_populates="user",
        passive_deletes=True,
    )
