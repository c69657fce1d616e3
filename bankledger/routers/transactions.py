"""
Transactions router — money movements and transaction history.

Member endpoints (require a session):
  GET  /transactions                         — History across all own accounts
  POST /transactions/deposit                 — Cash in
  POST /transactions/withdraw                — Cash out
  POST /transactions/transfer                — Between two accounts
  POST /transactions/external/outgoing       — Pay an external IBAN
  GET  /transactions/balance/{account_id}    — Current balance of one account

Interbank endpoint (requires the shared API key, no session):
  POST /transactions/external/incoming       — Credit an account by IBAN

Amounts arrive as decimals and are converted to integer cents here;
the services work in cents only.
"""

import math
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankledger.database import get_db
from bankledger.dependencies import get_current_user, require_external_api_key
from bankledger.models.user import User
from bankledger.money import decimal_to_cents
from bankledger.schemas.transaction import (
    AccountBalanceResponse,
    DepositRequest,
    ExternalIncomingRequest,
    ExternalOutgoingRequest,
    MovementResponse,
    Pagination,
    TransactionPage,
    TransactionResponse,
    TransferRequest,
    TransferResponse,
    WithdrawRequest,
)
from bankledger.services import account_service, movement_service, transaction_service

router = APIRouter()


@router.get(
    "",
    response_model=TransactionPage,
    summary="List your transactions",
)
async def list_transactions(
    type: str | None = Query(None, description="deposit, withdrawal, transfer, external_incoming, external_outgoing"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Transactions touching any of your accounts, newest first.

    endDate is inclusive. The pagination block reports the total number of
    matching rows and the number of pages.
    """
    transactions = await transaction_service.get_user_transactions(
        db,
        user.id,
        txn_type=type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=(page - 1) * limit,
    )
    total = await transaction_service.count_user_transactions(
        db,
        user.id,
        txn_type=type,
        start_date=start_date,
        end_date=end_date,
    )
    return TransactionPage(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post(
    "/deposit",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Deposit cash",
)
async def deposit(
    request: DepositRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await movement_service.deposit(
        db,
        request.account_id,
        user.id,
        decimal_to_cents(request.amount),
        reference=request.reference,
    )
    return MovementResponse(
        message="Deposit successful",
        transaction=TransactionResponse.model_validate(result.transaction),
        new_balance=result.balance_of(request.account_id),
    )


@router.post(
    "/withdraw",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw cash",
)
async def withdraw(
    request: WithdrawRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Rejected with 400 insufficient_funds when the balance is below the
    amount. Withdrawing the exact balance is allowed.
    """
    result = await movement_service.withdraw(
        db,
        request.account_id,
        user.id,
        decimal_to_cents(request.amount),
        reference=request.reference,
    )
    return MovementResponse(
        message="Withdrawal successful",
        transaction=TransactionResponse.model_validate(result.transaction),
        new_balance=result.balance_of(request.account_id),
    )


@router.post(
    "/transfer",
    response_model=TransferResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Transfer between accounts",
)
async def transfer(
    request: TransferRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Move money from one of your accounts to any account.

    One transaction row references both accounts.
    """
    result = await movement_service.transfer(
        db,
        request.from_account_id,
        request.to_account_id,
        decimal_to_cents(request.amount),
        user_id=user.id,
        reference=request.reference,
    )
    return TransferResponse(
        message="Transfer successful",
        transaction=TransactionResponse.model_validate(result.transaction),
        from_balance=result.balance_of(request.from_account_id),
        to_balance=result.balance_of(request.to_account_id),
    )


@router.post(
    "/external/outgoing",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay an external IBAN",
)
async def external_outgoing(
    request: ExternalOutgoingRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await movement_service.external_outgoing(
        db,
        request.from_account_id,
        user.id,
        request.recipient_name,
        request.recipient_iban,
        decimal_to_cents(request.amount),
        reference=request.reference,
    )
    return MovementResponse(
        message="External payment sent",
        transaction=TransactionResponse.model_validate(result.transaction),
        new_balance=result.balance_of(request.from_account_id),
    )


@router.post(
    "/external/incoming",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Receive an external payment",
    dependencies=[Depends(require_external_api_key)],
)
async def external_incoming(
    request: ExternalIncomingRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Credit the account holding `iban`. Authenticated by the
    X-External-Api-Key (or X-Api-Key) header, not by a user session.
    """
    result = await movement_service.external_incoming(
        db,
        request.iban,
        request.sender_name,
        request.sender_iban,
        decimal_to_cents(request.amount),
        reference=request.reference,
    )
    return MovementResponse(
        message="External payment received",
        transaction=TransactionResponse.model_validate(result.transaction),
        new_balance=result.balance_of(result.transaction.to_account_id),
    )


@router.get(
    "/balance/{account_id}",
    response_model=AccountBalanceResponse,
    summary="Get the balance of one of your accounts",
)
async def get_account_balance(
    account_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await account_service.get_owned_account(db, account_id, user.id)
    return AccountBalanceResponse(account_id=account.id, balance=account.balance)
