"""
Accounts router — bank account management endpoints.

All endpoints require a session and are scoped to the authenticated user:
  POST   /accounts                              — Open a new account
  GET    /accounts                              — List own accounts
  GET    /accounts/{account_id}                 — Get own account details
  GET    /accounts/{account_id}/balance         — Stored vs. recomputed balance
  GET    /accounts/{account_id}/transactions    — Transaction history of one account
  DELETE /accounts/{account_id}                 — Close an account (sweeping funds)

Closing an account that still holds money requires ?transfer_account_id=
naming another of the caller's accounts; the balance is moved there first.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankledger.database import get_db
from bankledger.dependencies import get_current_user
from bankledger.models.user import User
from bankledger.money import cents_to_decimal
from bankledger.schemas.account import (
    AccountClosureResponse,
    AccountCreateRequest,
    AccountResponse,
    BalanceResponse,
)
from bankledger.schemas.transaction import TransactionResponse
from bankledger.services import account_service, movement_service, transaction_service

router = APIRouter()


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a new bank account",
)
async def create_account(
    request: AccountCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Open a checking, savings or business account with a zero balance.

    The account number and IBAN are generated server-side and stored
    encrypted; they are returned decrypted here.
    """
    account = await account_service.create_account(
        db=db,
        user_id=user.id,
        account_type=request.account_type,
    )
    return AccountResponse.from_account(account)


@router.get(
    "",
    response_model=list[AccountResponse],
    summary="List your accounts",
)
async def list_accounts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    accounts = await account_service.get_accounts(db, user.id)
    return [AccountResponse.from_account(account) for account in accounts]


@router.get(
    "/{account_id}",
    response_model=AccountResponse,
    summary="Get account details",
)
async def get_account(
    account_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Returns 403 if the account belongs to a different user, or 404 if
    the account doesn't exist.
    """
    account = await account_service.get_owned_account(db, account_id, user.id)
    return AccountResponse.from_account(account)


@router.get(
    "/{account_id}/balance",
    response_model=BalanceResponse,
    summary="Check account balance",
)
async def get_balance(
    account_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the account balance, both stored and computed from transactions.

    The `match` flag is false when the two disagree, which would indicate
    a data integrity issue.
    """
    result = await account_service.get_balance(db, account_id, user.id)
    return BalanceResponse.from_result(result)


@router.get(
    "/{account_id}/transactions",
    response_model=list[TransactionResponse],
    summary="List transactions for an account",
)
async def list_account_transactions(
    account_id: int,
    type: str | None = Query(None, description="deposit, withdrawal, transfer, external_incoming, external_outgoing"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List transactions where the account is either side, newest first."""
    await account_service.get_owned_account(db, account_id, user.id)
    return await transaction_service.get_account_transactions(
        db,
        account_id,
        txn_type=type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


@router.delete(
    "/{account_id}",
    response_model=AccountClosureResponse,
    summary="Close an account",
)
async def close_account(
    account_id: int,
    transfer_account_id: int | None = Query(None, description="Destination for the remaining balance"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Close an account.

    - Zero balance: the account is deleted.
    - Positive balance without transfer_account_id: 400, nothing changes.
    - transfer_account_id equal to the account: 400.
    - transfer_account_id missing or owned by someone else: 403.
    """
    result = await movement_service.close_account(
        db,
        account_id,
        user.id,
        transfer_account_id=transfer_account_id,
    )
    return AccountClosureResponse(
        message="Account closed",
        account_id=result.account_id,
        transferred_amount=cents_to_decimal(result.transferred_cents),
        transfer_account_id=result.transfer_account_id,
        transaction_id=result.transaction.id if result.transaction else None,
    )
