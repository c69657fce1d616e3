"""
Scheduled payments router — standing orders owned by the authenticated user.

  GET    /scheduled-payments             — List own scheduled payments
  POST   /scheduled-payments             — Create one from an own account
  DELETE /scheduled-payments/{id}        — Cancel one (owner only, else 404)

Due payments are executed by `python -m bankledger.scheduler`, not here.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankledger.database import get_db
from bankledger.dependencies import get_current_user
from bankledger.models.user import User
from bankledger.money import decimal_to_cents
from bankledger.schemas.scheduled_payment import (
    ScheduledPaymentCreateRequest,
    ScheduledPaymentResponse,
)
from bankledger.services import scheduled_payment_service

router = APIRouter()


@router.get(
    "",
    response_model=list[ScheduledPaymentResponse],
    summary="List your scheduled payments",
)
async def list_scheduled_payments(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await scheduled_payment_service.get_scheduled_payments(db, user.id)


@router.post(
    "",
    response_model=ScheduledPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a scheduled payment",
)
async def create_scheduled_payment(
    request: ScheduledPaymentCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The first run is on start_date. Returns 403 if the source account isn't yours."""
    return await scheduled_payment_service.create_scheduled_payment(
        db,
        user_id=user.id,
        account_id=request.account_id,
        payee_name=request.payee_name,
        payee_iban=request.payee_iban,
        amount_cents=decimal_to_cents(request.amount),
        frequency=request.frequency,
        start_date=request.start_date,
        notes=request.notes,
    )


@router.delete(
    "/{payment_id}",
    response_model=ScheduledPaymentResponse,
    summary="Cancel a scheduled payment",
)
async def delete_scheduled_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await scheduled_payment_service.delete_scheduled_payment(db, payment_id, user.id)
