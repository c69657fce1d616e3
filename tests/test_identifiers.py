"""
Tests for account number and IBAN generation.

These tests verify:
  - Account numbers follow ACC-<6 digits>-<12 hex>
  - Generated IBANs satisfy the ISO 7064 MOD 97 check (remainder 1)
  - Known real-world IBANs validate, and a single changed digit does not
  - Display helpers group and mask correctly
"""

import re

from bankledger.identifiers import (
    format_iban,
    generate_account_number,
    generate_iban,
    iban_check_digits,
    is_valid_iban,
    mask_account_number,
)

ACCOUNT_NUMBER_RE = re.compile(r"^ACC-\d{6}-[0-9A-F]{12}$")


class TestAccountNumbers:

    def test_format(self):
        assert ACCOUNT_NUMBER_RE.match(generate_account_number())

    def test_practically_unique(self):
        numbers = {generate_account_number() for _ in range(500)}
        assert len(numbers) == 500


class TestIban:

    def test_known_valid_ibans(self):
        assert is_valid_iban("DE89370400440532013000")
        assert is_valid_iban("GB82 WEST 1234 5698 7654 32")
        assert is_valid_iban("fr1420041010050500013m02606")

    def test_single_digit_change_is_invalid(self):
        assert not is_valid_iban("DE89370400440532013001")

    def test_malformed_is_invalid(self):
        assert not is_valid_iban("")
        assert not is_valid_iban("DE")
        assert not is_valid_iban("1234567890")
        assert not is_valid_iban("DE89-3704-0044")

    def test_check_digits_match_reference(self):
        assert iban_check_digits("DE", "370400440532013000") == "89"

    def test_generated_ibans_validate(self):
        for _ in range(200):
            iban = generate_iban(generate_account_number())
            assert is_valid_iban(iban), iban

    def test_generated_layout(self):
        iban = generate_iban("ACC-123456-ABCDEF012345")
        assert iban.startswith("DE")
        assert len(iban) == 2 + 2 + 8 + 10
        assert iban[4:12] == "37040044"
        assert iban[12:].isdigit()

    def test_custom_country_and_short_bank_code(self):
        iban = generate_iban("ACC-000001-000000000001", country_code="nl", bank_code="123", account_digits=12)
        assert iban.startswith("NL")
        assert iban[4:12] == "00000123"
        assert len(iban) == 4 + 8 + 12
        assert is_valid_iban(iban)

    def test_deterministic_for_same_account_number(self):
        assert generate_iban("ACC-123456-ABCDEF012345") == generate_iban("ACC-123456-ABCDEF012345")


class TestDisplayHelpers:

    def test_format_iban(self):
        assert format_iban("DE89370400440532013000") == "DE89 3704 0044 0532 0130 00"

    def test_mask_account_number(self):
        assert mask_account_number("ACC-123456-ABCDEF012345") == "****-****-2345"
        assert mask_account_number(None) == "****-****-****"
        assert mask_account_number("12") == "****-****-**12"
