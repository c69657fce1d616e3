"""
Authentication router — registration, login and two-factor endpoints.

Endpoints:
  POST /auth/register                 — Create a user and start 2FA setup
  POST /auth/login                    — Check the password and open a 2FA challenge
  POST /auth/two-factor/verify        — Complete the challenge, receive a session
  POST /auth/two-factor/regenerate    — New secret (setup only)
  POST /auth/two-factor/cancel        — Drop the pending challenge
  POST /auth/two-factor/disable       — Turn 2FA off (session + current code)
  POST /auth/logout                   — Clear the session cookie
  GET  /auth/me                       — The authenticated user

Cookies:
  Register and login never issue a session. They set the short-lived
  pending cookie; verify swaps it for the session cookie. The session
  token is also returned in the verify body for clients that prefer the
  Authorization header.

Security audit notes:
  - Plaintext passwords and OTP codes exist only in memory during request
    processing and are never logged.
  - No request body logging middleware is installed.

Rate limiting:
  login, verify and regenerate count attempts per client address and
  identity (see rate_limit.py). Over the limit they answer 429 with a
  Retry-After header before any credential or code is checked.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankledger.config import settings
from bankledger.cookies import (
    clear_pending_cookie,
    clear_session_cookie,
    set_pending_cookie,
    set_session_cookie,
)
from bankledger.database import get_db
from bankledger.dependencies import get_current_user
from bankledger.models.user import User
from bankledger.rate_limit import enforce_auth_rate_limit, pending_subject
from bankledger.schemas.auth import (
    ChallengeResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    SessionResponse,
    TwoFactorChallengeResponse,
    TwoFactorCodeRequest,
)
from bankledger.schemas.user import UserResponse
from bankledger.services import auth_service
from bankledger.services.auth_service import TwoFactorChallenge

router = APIRouter()


def _challenge_response(message: str, user: User | None, challenge: TwoFactorChallenge) -> ChallengeResponse:
    return ChallengeResponse(
        message=message,
        user=UserResponse.model_validate(user) if user is not None else None,
        two_factor=TwoFactorChallengeResponse(
            status=challenge.status,
            expires_in_minutes=challenge.expires_in_minutes,
            otpauth_url=challenge.otpauth_url,
            manual_code=challenge.manual_code,
        ),
    )


@router.post(
    "/register",
    response_model=ChallengeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def register(
    request: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new user. The response carries the setup challenge
    (otpauthUrl, manualCode); no session is issued until a code is verified.
    """
    user, challenge = await auth_service.register(
        db=db,
        username=request.username,
        email=request.email,
        password=request.password,
    )
    set_pending_cookie(response, challenge.pending_token)
    return _challenge_response("Registration successful. Complete two-factor setup.", user, challenge)


@router.post(
    "/login",
    response_model=ChallengeResponse,
    summary="Check credentials and start a two-factor challenge",
)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    await enforce_auth_rate_limit(request, "login", body.email)
    user, challenge = await auth_service.login(
        db=db,
        email=body.email,
        password=body.password,
    )
    set_pending_cookie(response, challenge.pending_token)
    clear_session_cookie(response)

    if challenge.status == "setup":
        message = "Two-factor setup required"
    else:
        message = "Two-factor verification required"
    return _challenge_response(message, None, challenge)


@router.post(
    "/two-factor/verify",
    response_model=SessionResponse,
    summary="Verify a TOTP code and receive a session",
)
async def verify_two_factor(
    body: TwoFactorCodeRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Complete the pending challenge.

    Returns 401 "No pending two-factor challenge" without a pending cookie,
    a distinct 401 when the challenge has expired, and 401 for a wrong code
    (the challenge stays open for a retry).
    """
    pending_token = request.cookies.get(settings.PENDING_COOKIE_NAME)
    await enforce_auth_rate_limit(request, "two-factor-verify", pending_subject(pending_token))
    user, token = await auth_service.verify_two_factor(db, pending_token, body.code)
    clear_pending_cookie(response)
    set_session_cookie(response, token)
    return SessionResponse(
        message="Two-factor verification successful",
        user=UserResponse.model_validate(user),
        token=token,
    )


@router.post(
    "/two-factor/regenerate",
    response_model=ChallengeResponse,
    summary="Generate a new TOTP secret during setup",
)
async def regenerate_two_factor(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    pending_token = request.cookies.get(settings.PENDING_COOKIE_NAME)
    await enforce_auth_rate_limit(request, "two-factor-regenerate", pending_subject(pending_token))
    challenge = await auth_service.regenerate_two_factor(db, pending_token)
    set_pending_cookie(response, challenge.pending_token)
    return _challenge_response("Two-factor secret regenerated", None, challenge)


@router.post(
    "/two-factor/cancel",
    response_model=MessageResponse,
    summary="Cancel the pending two-factor challenge",
)
async def cancel_two_factor(response: Response):
    clear_pending_cookie(response)
    return MessageResponse(message="Two-factor challenge cancelled")


@router.post(
    "/two-factor/disable",
    response_model=UserResponse,
    summary="Disable two-factor authentication",
)
async def disable_two_factor(
    body: TwoFactorCodeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Requires a session and a current code. The next login restarts setup."""
    return await auth_service.disable_two_factor(db, user, body.code)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Log out",
)
async def logout(response: Response):
    clear_session_cookie(response)
    clear_pending_cookie(response)
    return MessageResponse(message="Logged out")


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get the authenticated user",
)
async def me(user: User = Depends(get_current_user)):
    return user
