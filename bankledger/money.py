"""
Conversions between API decimals and stored integer cents.

The ledger stores every amount as an integer number of cents so that
arithmetic and comparisons in SQL are exact. The API speaks two-place
decimals (e.g. Decimal("1000.00")), bounded by MAX_AMOUNT per movement and
MAX_BALANCE_CENTS per account.
"""

from decimal import Decimal

CENT = Decimal("0.01")

# Largest single amount the API accepts: 999,999,999,999.99
MAX_AMOUNT = Decimal("999999999999.99")
# Largest balance an account may hold. Kept well inside a signed 64-bit
# BIGINT so that balance + MAX_AMOUNT and the ledger sums never overflow.
MAX_BALANCE_CENTS = 10**17 - 1


def decimal_to_cents(amount: Decimal) -> int:
    """
    Convert a decimal amount to integer cents.

    Raises:
        ValueError: If the amount has more than two fractional digits.
    """
    amount = Decimal(amount)
    if amount != amount.quantize(CENT):
        raise ValueError(f"Amount {amount} has more than two decimal places")
    return int(amount.quantize(CENT) * 100)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
