"""
FastAPI dependencies for authentication.

Dependencies are reusable functions that FastAPI injects into route handlers.
Two independent authentication boundaries exist:

  get_current_user (session JWT -> User)
      Member endpoints. The session token is read from the
      "Authorization: Bearer <token>" header when present, otherwise from
      the httpOnly session cookie. Pending two-factor tokens are rejected
      here: a user who has only passed the password check has no session.

  require_external_api_key (shared key -> None)
      The inbound interbank endpoint. It is authenticated by a static API
      key in the X-External-Api-Key (or X-Api-Key) header, independent of
      any user session. The comparison runs in constant time.

Every protected endpoint declares one of these as a parameter. If the
dependency fails, the request is rejected before the route handler runs.
"""

import hmac
import logging

from fastapi import Depends, Header, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankledger.config import settings
from bankledger.database import get_db
from bankledger.exceptions import (
    AuthenticationRequiredError,
    InvalidApiKeyError,
    ServiceNotConfiguredError,
)
from bankledger.models.user import User
from bankledger.security import TokenExpired, TokenInvalid, decode_session_token

security_logger = logging.getLogger("bankledger.security")

# auto_error=False so the cookie can be used when no header is sent
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_user(
    request: Request,
    bearer_token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the authenticated User from the session token.

    Raises:
        AuthenticationRequiredError (401): No token, an expired or invalid
            token, a pending two-factor token, or an unknown user.
    """
    token = bearer_token or request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        raise AuthenticationRequiredError("Authentication required")

    try:
        payload = decode_session_token(token)
        user_id = int(payload["sub"])
    except TokenExpired:
        raise AuthenticationRequiredError("Session expired")
    except (TokenInvalid, ValueError):
        raise AuthenticationRequiredError()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationRequiredError()

    return user


async def require_external_api_key(
    x_external_api_key: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> None:
    """
    Guard the inbound payment rail with the shared API key.

    Raises:
        ServiceNotConfiguredError (503): EXTERNAL_PAYMENTS_API_KEY is unset.
        InvalidApiKeyError (401): Missing or wrong key.
    """
    expected = settings.EXTERNAL_PAYMENTS_API_KEY
    if not expected:
        raise ServiceNotConfiguredError("External payments API key is not configured")

    provided = x_external_api_key or x_api_key or ""
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        security_logger.warning("Rejected external payment request with an invalid API key")
        raise InvalidApiKeyError()
