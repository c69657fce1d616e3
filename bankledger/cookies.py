"""
Session and pending two-factor cookies.

Both cookies are httpOnly, SameSite=Strict and scoped to "/". Their
max-age matches the lifetime of the JWT they carry.
"""

from fastapi import Response

from bankledger.config import settings


def _set_cookie(response: Response, name: str, token: str, max_age_minutes: int) -> None:
    response.set_cookie(
        key=name,
        value=token,
        max_age=max_age_minutes * 60,
        httponly=True,
        samesite="strict",
        secure=settings.COOKIE_SECURE,
        path="/",
    )


def _clear_cookie(response: Response, name: str) -> None:
    response.delete_cookie(
        key=name,
        httponly=True,
        samesite="strict",
        secure=settings.COOKIE_SECURE,
        path="/",
    )


def set_session_cookie(response: Response, token: str) -> None:
    _set_cookie(response, settings.SESSION_COOKIE_NAME, token, settings.SESSION_TTL_MINUTES)


def clear_session_cookie(response: Response) -> None:
    _clear_cookie(response, settings.SESSION_COOKIE_NAME)


def set_pending_cookie(response: Response, token: str) -> None:
    _set_cookie(response, settings.PENDING_COOKIE_NAME, token, settings.PENDING_2FA_TTL_MINUTES)


def clear_pending_cookie(response: Response) -> None:
    _clear_cookie(response, settings.PENDING_COOKIE_NAME)
