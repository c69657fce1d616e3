"""
Authentication service — registration, login and the two-factor state machine.

This module contains the auth logic, separated from HTTP concerns. The
router calls these functions and turns the results into cookies and JSON.

States:
    anonymous -> credentials-verified -> {setup | verify} -> authenticated

Register / login flow:
  1. Verify the password (login) or create the user (register)
  2. If 2FA is not enabled yet: reuse or create the TOTP secret, issue a
     pending token with intent "setup", and return the manual code and
     otpauth:// URL so the user can enroll an authenticator app
  3. If 2FA is enabled: issue a pending token with intent "login" and
     reveal nothing about the secret

Verify flow:
  1. Resolve the user from the pending token (missing -> 401, expired -> a
     distinct 401 so the client restarts the login)
  2. Check the 6-digit code against the stored secret (±1 time step)
  3. On the first success during setup, mark 2FA enabled
  4. Issue a session token; the router clears the pending cookie

A wrong code leaves everything untouched: the pending token stays valid
until its own short expiry, so the user can retry.

Security notes:
  - Login returns the same error for "wrong password" and "email not found"
  - The TOTP secret is stored encrypted (SEC:: prefix)
  - Failures go to the "bankledger.security" logger without codes or secrets
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankledger import twofactor
from bankledger.config import settings
from bankledger.exceptions import (
    DuplicateEmailError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidOperationError,
    InvalidOTPCodeError,
    TwoFactorChallengeExpiredError,
    TwoFactorChallengeMissingError,
    UserNotFoundError,
)
from bankledger.models.user import User
from bankledger.security import (
    TokenExpired,
    TokenInvalid,
    create_pending_token,
    create_session_token,
    decode_pending_token,
    decrypt_value,
    encrypt_secret,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("bankledger.security")


class ChallengeIntent(str, enum.Enum):
    SETUP = "setup"
    LOGIN = "login"


@dataclass
class TwoFactorChallenge:
    """What the client needs to continue a pending login."""

    status: str
    pending_token: str
    expires_in_minutes: int
    otpauth_url: str | None = None
    manual_code: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def _setup_challenge(user: User, secret: str) -> TwoFactorChallenge:
    return TwoFactorChallenge(
        status="setup",
        pending_token=create_pending_token(user.id, user.email, ChallengeIntent.SETUP.value),
        expires_in_minutes=settings.PENDING_2FA_TTL_MINUTES,
        otpauth_url=twofactor.build_otpauth_url(secret, user.email or user.username),
        manual_code=twofactor.format_secret_for_display(secret),
    )


def _verify_challenge(user: User) -> TwoFactorChallenge:
    return TwoFactorChallenge(
        status="verify",
        pending_token=create_pending_token(user.id, user.email, ChallengeIntent.LOGIN.value),
        expires_in_minutes=settings.PENDING_2FA_TTL_MINUTES,
    )


def _ensure_secret(user: User) -> str:
    """Return the user's current TOTP secret, creating one if none is stored."""
    secret = decrypt_value(user.two_factor_secret)
    if not secret:
        secret = twofactor.generate_secret()
        user.two_factor_secret = encrypt_secret(secret)
        user.two_factor_enabled = False
        user.two_factor_verified_at = None
    return secret


async def _resolve_pending(db: AsyncSession, pending_token: str | None) -> tuple[User, str]:
    """Map a pending token to (user, intent), or raise a challenge error."""
    if not pending_token:
        raise TwoFactorChallengeMissingError()

    try:
        payload = decode_pending_token(pending_token)
    except TokenExpired:
        security_logger.info("Expired two-factor challenge presented")
        raise TwoFactorChallengeExpiredError()
    except TokenInvalid:
        security_logger.warning("Invalid two-factor challenge token presented")
        raise TwoFactorChallengeMissingError()

    result = await db.execute(select(User).where(User.id == int(payload["sub"])))
    user = result.scalar_one_or_none()
    if user is None or not user.two_factor_secret:
        raise TwoFactorChallengeMissingError()

    return user, payload.get("intent", ChallengeIntent.LOGIN.value)


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------

async def register(
    db: AsyncSession,
    username: str,
    email: str,
    password: str,
) -> tuple[User, TwoFactorChallenge]:
    """
    Create a user and start two-factor setup.

    No session is issued: the user must confirm a TOTP code first.

    Raises:
        DuplicateEmailError: If the email is already registered.
        DuplicateUsernameError: If the username is taken.
    """
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise DuplicateEmailError(email)

    result = await db.execute(select(User).where(User.username == username))
    if result.scalar_one_or_none():
        raise DuplicateUsernameError(username)

    user = User(
        username=username,
        email=email,
        hashed_password=hash_password(password),
    )
    db.add(user)
    secret = _ensure_secret(user)
    # Flush to get user.id for the pending token
    await db.flush()

    logger.info("Registered user %s", user.id)
    return user, _setup_challenge(user, secret)


async def login(
    db: AsyncSession,
    email: str,
    password: str,
) -> tuple[User, TwoFactorChallenge]:
    """
    Check credentials and open a two-factor challenge.

    Raises:
        InvalidCredentialsError: Unknown email or wrong password.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    # Same error for both cases
    if user is None or not verify_password(password, user.hashed_password):
        security_logger.warning("Failed password login attempt")
        raise InvalidCredentialsError()

    if user.two_factor_enabled and user.two_factor_secret:
        return user, _verify_challenge(user)

    secret = _ensure_secret(user)
    await db.flush()
    return user, _setup_challenge(user, secret)


# ---------------------------------------------------------------------------
# Two-factor transitions
# ---------------------------------------------------------------------------

async def verify_two_factor(
    db: AsyncSession,
    pending_token: str | None,
    code: str,
    for_time: datetime | None = None,
) -> tuple[User, str]:
    """
    Complete a pending challenge with a TOTP code.

    Returns:
        Tuple of (User, session token).

    Raises:
        TwoFactorChallengeMissingError: No usable pending token.
        TwoFactorChallengeExpiredError: The pending token timed out.
        InvalidOTPCodeError: Wrong code; the challenge stays open.
    """
    user, intent = await _resolve_pending(db, pending_token)

    secret = decrypt_value(user.two_factor_secret)
    if not twofactor.verify_code(secret, code, for_time=for_time):
        security_logger.warning("Invalid two-factor code for user %s", user.id)
        raise InvalidOTPCodeError()

    if not user.two_factor_enabled:
        user.two_factor_enabled = True
        user.two_factor_verified_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Two-factor authentication enabled for user %s (intent=%s)", user.id, intent)

    return user, create_session_token(user.id, user.email)


async def regenerate_two_factor(db: AsyncSession, pending_token: str | None) -> TwoFactorChallenge:
    """
    Replace the TOTP secret of a user who is still in setup.

    Raises:
        InvalidOperationError: Two-factor authentication is already enabled.
    """
    user, _ = await _resolve_pending(db, pending_token)
    if user.two_factor_enabled:
        raise InvalidOperationError("Two-factor authentication is already enabled")

    secret = twofactor.generate_secret()
    user.two_factor_secret = encrypt_secret(secret)
    await db.flush()

    logger.info("Regenerated two-factor secret for user %s", user.id)
    return _setup_challenge(user, secret)


async def disable_two_factor(db: AsyncSession, user: User, code: str) -> User:
    """
    Turn 2FA off for an authenticated user who proves possession with a code.

    The next login starts setup again with a fresh secret.
    """
    if not user.two_factor_enabled:
        raise InvalidOperationError("Two-factor authentication is not enabled")

    if not twofactor.verify_code(decrypt_value(user.two_factor_secret), code):
        security_logger.warning("Invalid two-factor code on disable for user %s", user.id)
        raise InvalidOTPCodeError()

    user.two_factor_secret = None
    user.two_factor_enabled = False
    user.two_factor_verified_at = None
    await db.flush()

    security_logger.info("Two-factor authentication disabled for user %s", user.id)
    return user
