"""
Account number and IBAN generation.

Account numbers look like ``ACC-482913-9F3A0C11B2D4``: six digits taken from
the current millisecond clock followed by 48 random bits in hex. No
reservation table is kept; the unique hash index on accounts rejects the
rare collision and account creation retries.

IBANs follow ISO 13616 with ISO 7064 MOD 97-10 check digits:

    {country}{check digits}{bank code}{account digits}

The account digits are derived from the account number by expanding letters
to numbers (A=10 ... Z=35), dropping everything else, and keeping the last
IBAN_ACCOUNT_DIGITS digits (zero-padded on the left when shorter).
"""

import secrets
import time

from bankledger.config import settings
from bankledger.security import normalize_identifier


def generate_account_number() -> str:
    timestamp_fragment = str(int(time.time() * 1000))[-6:]
    random_part = secrets.token_hex(6).upper()
    return f"ACC-{timestamp_fragment}-{random_part}"


def _expand_letters(value: str) -> str:
    """Replace each letter by its two-digit IBAN value and keep digits as-is."""
    digits = []
    for char in value:
        if char.isdigit():
            digits.append(char)
        elif "A" <= char <= "Z":
            digits.append(str(ord(char) - ord("A") + 10))
    return "".join(digits)


def _mod97(numeric: str) -> int:
    # Chunked so the intermediate stays small, as in the ISO 7064 reference
    remainder = 0
    for start in range(0, len(numeric), 9):
        remainder = int(str(remainder) + numeric[start:start + 9]) % 97
    return remainder


def iban_check_digits(country_code: str, bban: str) -> str:
    """Compute the two check digits for a country code and BBAN."""
    rearranged = _expand_letters(normalize_identifier(bban + country_code + "00"))
    return f"{98 - _mod97(rearranged):02d}"


def is_valid_iban(iban: str) -> bool:
    """True when the IBAN is well-formed and its MOD 97 remainder is 1."""
    normalized = normalize_identifier(iban)
    if len(normalized) < 5 or not normalized.isalnum():
        return False
    if not normalized[:2].isalpha() or not normalized[2:4].isdigit():
        return False
    rearranged = normalized[4:] + normalized[:4]
    return _mod97(_expand_letters(rearranged)) == 1


def generate_iban(
    account_number: str,
    country_code: str | None = None,
    bank_code: str | None = None,
    account_digits: int | None = None,
) -> str:
    """Build a check-digit-valid IBAN for an account number."""
    country = (country_code or settings.IBAN_COUNTRY_CODE).strip().upper()
    if len(country) != 2 or not country.isalpha():
        raise ValueError(f"Invalid IBAN country code: {country!r}")

    width = account_digits or settings.IBAN_ACCOUNT_DIGITS
    bank = "".join(ch for ch in (bank_code or settings.IBAN_BANK_CODE) if ch.isdigit())
    bank = bank.zfill(8)[-8:]

    payload = _expand_letters(normalize_identifier(account_number))
    payload = payload[-width:].zfill(width)

    bban = f"{bank}{payload}"
    return f"{country}{iban_check_digits(country, bban)}{bban}"


def format_iban(iban: str) -> str:
    """Group an IBAN in blocks of four for display: DE89 3704 0044 ..."""
    normalized = normalize_identifier(iban)
    return " ".join(normalized[i:i + 4] for i in range(0, len(normalized), 4))


def mask_account_number(value: str | None) -> str:
    """Keep only the last four characters: ****-****-1234."""
    if not value:
        return "****-****-****"
    sanitized = "".join(value.split())
    return f"****-****-{sanitized[-4:].rjust(4, '*')}"
