"""
Security utilities: password hashing, JWT tokens, and encryption at rest.

This module centralizes the cryptographic operations so they're easy to
audit and update. Three concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - passlib's CryptContext runs Argon2id and verifies in constant time

2. JWT TOKENS (two independent kinds)
   - "pending" tokens prove "password verified, 2FA not yet completed".
     They carry an intent ("setup" or "login") and live for
     PENDING_2FA_TTL_MINUTES (default 5).
   - "session" tokens are issued only after a successful OTP check and live
     for SESSION_TTL_MINUTES (default 15).
   - Both are signed with SECRET_KEY but carry a "typ" claim, and each
     decoder rejects the other kind, so a pending token can never be used
     as a session and vice versa.

3. CONFIDENTIALITY CODEC (AES-256-GCM + SHA-256 lookup hash)
   - Account numbers, IBANs and TOTP secrets are encrypted with a random
     96-bit nonce per call, so the same plaintext never produces the same
     ciphertext twice.
   - Because ciphertext cannot be compared for equality, every encrypted
     identifier is stored next to a deterministic SHA-256 digest of its
     normalized plaintext. Uniqueness constraints and lookups use the digest.
   - Stored values are a tagged union: "<PREFIX>" + base64(nonce|tag|ct) is
     encrypted, anything without a known prefix is legacy plaintext and is
     returned unchanged. Corrupted ciphertext decrypts to None and logs a
     warning. Once every row carries a prefix the plaintext branch can go.
"""

import base64
import binascii
import hashlib
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from bankledger.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password using Argon2id."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a stored Argon2 hash."""
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------

SESSION_TOKEN_TYPE = "session"
PENDING_TOKEN_TYPE = "pending_2fa"


class TokenExpired(Exception):
    """The token signature is valid but its exp claim is in the past."""


class TokenInvalid(Exception):
    """The token is malformed, tampered with, or of the wrong kind."""


def _encode_token(claims: dict, token_type: str, expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    to_encode.update(
        {
            "typ": token_type,
            "exp": datetime.now(timezone.utc) + expires_delta,
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _decode_token(token: str, token_type: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc

    if payload.get("typ") != token_type or payload.get("sub") is None:
        raise TokenInvalid()
    return payload


def create_session_token(user_id: int, email: str, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed session JWT.

    Args:
        user_id: Subject of the token (stored as a string "sub" claim).
        email: Included for convenience on the client side.
        expires_delta: Override for SESSION_TTL_MINUTES (used by tests).
    """
    return _encode_token(
        {"sub": str(user_id), "email": email},
        SESSION_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.SESSION_TTL_MINUTES),
    )


def create_pending_token(
    user_id: int,
    email: str,
    intent: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a short-lived pending two-factor JWT carrying the challenge intent."""
    return _encode_token(
        {"sub": str(user_id), "email": email, "intent": intent},
        PENDING_TOKEN_TYPE,
        expires_delta or timedelta(minutes=settings.PENDING_2FA_TTL_MINUTES),
    )


def decode_session_token(token: str) -> dict:
    """
    Decode and verify a session token.

    Raises:
        TokenExpired: The session has timed out.
        TokenInvalid: Bad signature, malformed, or not a session token.
    """
    return _decode_token(token, SESSION_TOKEN_TYPE)


def decode_pending_token(token: str) -> dict:
    """Decode and verify a pending two-factor token (same errors as sessions)."""
    return _decode_token(token, PENDING_TOKEN_TYPE)


# ---------------------------------------------------------------------------
# 3. Confidentiality codec
# ---------------------------------------------------------------------------

ACCOUNT_NUMBER_PREFIX = "ENC::"
IBAN_PREFIX = "IBAN::"
SECRET_PREFIX = "SEC::"

_KNOWN_PREFIXES = (ACCOUNT_NUMBER_PREFIX, IBAN_PREFIX, SECRET_PREFIX)
_NONCE_LENGTH = 12
_TAG_LENGTH = 16


@dataclass(frozen=True)
class PlainValue:
    """A stored value written before encryption was introduced."""

    text: str


@dataclass(frozen=True)
class EncryptedValue:
    """A stored value produced by SensitiveValueCodec.encrypt()."""

    prefix: str
    payload: str


def parse_stored_value(stored: str) -> PlainValue | EncryptedValue:
    """Split a stored column value into its tagged-union form."""
    for prefix in _KNOWN_PREFIXES:
        if stored.startswith(prefix):
            return EncryptedValue(prefix=prefix, payload=stored[len(prefix):])
    return PlainValue(text=stored)


def normalize_identifier(value: str) -> str:
    """Upper-case and strip all whitespace (used for IBANs and account numbers)."""
    return "".join(value.split()).upper()


class SensitiveValueCodec:
    """
    Reversible authenticated encryption plus a deterministic lookup hash.

    The AES key is SHA-256(secret), derived once when the codec is built.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("An encryption secret is required")
        self._aesgcm = AESGCM(hashlib.sha256(secret.encode("utf-8")).digest())

    def encrypt(self, plaintext: str, prefix: str = ACCOUNT_NUMBER_PREFIX) -> str:
        nonce = os.urandom(_NONCE_LENGTH)
        # AESGCM appends the 16-byte tag to the ciphertext; store it as nonce|tag|ct
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
        token = base64.b64encode(nonce + tag + ciphertext).decode("ascii")
        return f"{prefix}{token}"

    def decrypt(self, stored: str | None) -> str | None:
        """
        Decrypt a stored value.

        Untagged values pass through unchanged. A tagged value that fails
        authentication (wrong key, truncated or altered bytes) returns None
        and is logged; it never raises to the caller.
        """
        if stored is None:
            return None

        parsed = parse_stored_value(stored)
        if isinstance(parsed, PlainValue):
            return parsed.text

        try:
            raw = base64.b64decode(parsed.payload, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Stored %s value is not valid base64; returning None", parsed.prefix)
            return None

        if len(raw) < _NONCE_LENGTH + _TAG_LENGTH:
            logger.warning("Stored %s value is truncated; returning None", parsed.prefix)
            return None

        nonce = raw[:_NONCE_LENGTH]
        tag = raw[_NONCE_LENGTH:_NONCE_LENGTH + _TAG_LENGTH]
        ciphertext = raw[_NONCE_LENGTH + _TAG_LENGTH:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Stored %s value failed authentication; returning None", parsed.prefix)
            return None
        return plaintext.decode("utf-8")

    @staticmethod
    def hash(value: str) -> str:
        """SHA-256 hex digest of the normalized value, for equality lookups only."""
        return hashlib.sha256(normalize_identifier(value).encode("utf-8")).hexdigest()

    @staticmethod
    def is_encrypted(stored: str | None) -> bool:
        return stored is not None and isinstance(parse_stored_value(stored), EncryptedValue)


# Built once at import time from the configured secret; immutable afterwards.
codec = SensitiveValueCodec(settings.DATA_ENCRYPTION_KEY)


def encrypt_account_number(value: str) -> str:
    return codec.encrypt(normalize_identifier(value), ACCOUNT_NUMBER_PREFIX)


def encrypt_iban(value: str) -> str:
    return codec.encrypt(normalize_identifier(value), IBAN_PREFIX)


def encrypt_secret(value: str) -> str:
    return codec.encrypt(value, SECRET_PREFIX)


def decrypt_value(stored: str | None) -> str | None:
    return codec.decrypt(stored)


def hash_identifier(value: str) -> str:
    return codec.hash(value)
