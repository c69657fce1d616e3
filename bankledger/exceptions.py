"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors (like InsufficientFundsError)
without importing HTTP concepts. The handlers registered here translate them
into consistent JSON responses of the form:

    {"detail": "human readable message", "error_type": "machine_readable_slug"}

Exception hierarchy (HTTP status in brackets):
    BankAPIError (base)
    ├── NotFoundError                    [404]
    │   ├── AccountNotFoundError
    │   ├── ScheduledPaymentNotFoundError
    │   └── UserNotFoundError
    ├── AccessDeniedError                [403]
    ├── InsufficientFundsError           [400]
    ├── InvalidOperationError            [400]
    │   └── SameAccountTransferError
    ├── DuplicateEmailError              [409]
    ├── DuplicateUsernameError           [409]
    ├── AuthenticationError              [401]
    │   ├── InvalidCredentialsError
    │   ├── AuthenticationRequiredError
    │   ├── TwoFactorChallengeMissingError
    │   ├── TwoFactorChallengeExpiredError
    │   ├── InvalidOTPCodeError
    │   └── InvalidApiKeyError
    ├── RateLimitExceededError           [429]
    └── ServiceNotConfiguredError        [503]

Missing SECRET_KEY / DATA_ENCRYPTION_KEY is not part of this hierarchy: it is
fatal at import time (see config.py).
"""

from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankAPIError(Exception):
    """Base exception for all ledger domain errors."""

    status_code: int = 400
    error_type: str = "bank_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def to_content(self) -> dict:
        return {"detail": self.detail, "error_type": self.error_type}


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(BankAPIError):
    status_code = 404
    error_type = "not_found"


class AccountNotFoundError(NotFoundError):
    """Raised when a referenced account id, account number or IBAN has no match."""

    error_type = "account_not_found"

    def __init__(self, account_id: int | None = None, detail: str | None = None):
        self.account_id = account_id
        super().__init__(detail or f"Account {account_id} not found")


class ScheduledPaymentNotFoundError(NotFoundError):
    error_type = "scheduled_payment_not_found"

    def __init__(self, payment_id: int):
        self.payment_id = payment_id
        super().__init__(f"Scheduled payment {payment_id} not found")


class UserNotFoundError(NotFoundError):
    error_type = "user_not_found"

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


# ---------------------------------------------------------------------------
# Ownership and business rules
# ---------------------------------------------------------------------------

class AccessDeniedError(BankAPIError):
    """Raised when a user attempts to mutate or read a resource they don't own."""

    status_code = 403
    error_type = "access_denied"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class InsufficientFundsError(BankAPIError):
    """
    Raised when a debit would take a balance below zero.

    Attributes:
        account_id: The account that lacks sufficient funds.
        requested_cents: The amount the caller tried to debit.
        available_cents: The balance at the time of the check.
    """

    error_type = "insufficient_funds"

    def __init__(self, account_id: int, requested_cents: int, available_cents: int):
        self.account_id = account_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__("Insufficient funds")

    def to_content(self) -> dict:
        content = super().to_content()
        content["requested"] = str(Decimal(self.requested_cents).scaleb(-2))
        content["available"] = str(Decimal(self.available_cents).scaleb(-2))
        return content


class InvalidOperationError(BankAPIError):
    """Raised for requests that are well-formed but not allowed by ledger rules."""

    error_type = "invalid_operation"


class SameAccountTransferError(InvalidOperationError):
    error_type = "same_account_transfer"

    def __init__(self):
        super().__init__("Cannot transfer to the same account")


class DuplicateEmailError(BankAPIError):
    status_code = 409
    error_type = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class DuplicateUsernameError(BankAPIError):
    status_code = 409
    error_type = "duplicate_username"

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username} is already taken")


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthenticationError(BankAPIError):
    status_code = 401
    error_type = "authentication_failed"


class InvalidCredentialsError(AuthenticationError):
    """Same message for unknown email and wrong password (no user enumeration)."""

    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


class AuthenticationRequiredError(AuthenticationError):
    error_type = "authentication_required"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(detail)


class TwoFactorChallengeMissingError(AuthenticationError):
    error_type = "two_factor_challenge_missing"

    def __init__(self):
        super().__init__("No pending two-factor challenge")


class TwoFactorChallengeExpiredError(AuthenticationError):
    """Distinct from a bad code so the client restarts the login instead of retrying."""

    error_type = "two_factor_challenge_expired"

    def __init__(self):
        super().__init__("Two-factor challenge expired. Please log in again.")


class InvalidOTPCodeError(AuthenticationError):
    error_type = "invalid_otp_code"

    def __init__(self):
        super().__init__("Invalid or expired OTP code")


class InvalidApiKeyError(AuthenticationError):
    error_type = "invalid_api_key"

    def __init__(self):
        super().__init__("Invalid API key")


# ---------------------------------------------------------------------------
# Throttling
# ---------------------------------------------------------------------------

class RateLimitExceededError(BankAPIError):
    """Too many attempts at an auth action; retry_after is in seconds."""

    status_code = 429
    error_type = "rate_limit_exceeded"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__("Too many attempts. Please try again later.")


# ---------------------------------------------------------------------------
# Misconfiguration
# ---------------------------------------------------------------------------

class ServiceNotConfiguredError(BankAPIError):
    status_code = 503
    error_type = "service_not_configured"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Every BankAPIError subclass is rendered from its own status_code and
    to_content(), so adding an error type needs no new handler. Request
    validation errors are answered with 400 rather than FastAPI's default 422.
    """

    @app.exception_handler(BankAPIError)
    async def bank_api_error_handler(request: Request, exc: BankAPIError) -> JSONResponse:
        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": "Bearer"}
        elif isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_content(),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Request validation failed",
                "error_type": "validation_error",
                "errors": jsonable_encoder(exc.errors()),
            },
        )
