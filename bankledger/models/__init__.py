"""
SQLAlchemy ORM models package.

All models are imported here so that Base.metadata knows every table
before create_all() runs, and so other modules can import from
bankledger.models directly.
"""

from bankledger.models.user import User  # noqa: F401
from bankledger.models.account import Account, AccountType  # noqa: F401
from bankledger.models.transaction import Transaction, TransactionType, TransactionStatus  # noqa: F401
from bankledger.models.scheduled_payment import (  # noqa: F401
    ScheduledPayment,
    Frequency,
    ScheduledPaymentStatus,
)
