"""
Tests for the money-movement engine and transaction history.

These tests verify:
  - Deposits, withdrawals and transfers update balances and log one row each
  - A rejected movement changes nothing (balance and log untouched)
  - Withdrawing or transferring the exact balance is allowed
  - External incoming payments are keyed by IBAN and guarded by the API key
  - External outgoing payments record the recipient with an encrypted IBAN
  - History is scoped to the caller, paginated and filterable
  - The conditional balance update refuses to overdraw, including when a
    second session debits through an Account loaded before the first
    session committed
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bankledger.config import settings
from bankledger.database import Base, enable_sqlite_foreign_keys
from bankledger.exceptions import InsufficientFundsError, SameAccountTransferError
from bankledger.models.account import Account
from bankledger.models.transaction import Transaction
from bankledger.models.user import User
from bankledger.security import hash_password
from bankledger.services import account_service, movement_service


async def _open(client) -> dict:
    response = await client.post("/accounts", json={"account_type": "checking"})
    assert response.status_code == 201, response.text
    return response.json()


async def _funded(client, amount: str) -> dict:
    account = await _open(client)
    response = await client.post(
        "/transactions/deposit",
        json={"account_id": account["id"], "amount": amount},
    )
    assert response.status_code == 201, response.text
    return account


async def _balance(client, account_id: int) -> str:
    response = await client.get(f"/transactions/balance/{account_id}")
    assert response.status_code == 200, response.text
    return response.json()["balance"]


def _incoming(iban: str, **overrides) -> dict:
    payload = {"iban": iban, "sender_name": "ACME", "sender_iban": "GB82WEST12345698765432", "amount": "1.00"}
    payload.update(overrides)
    return payload


async def _count_transactions(db_session) -> int:
    return (await db_session.execute(select(func.count(Transaction.id)))).scalar_one()


class TestDeposit:

    async def test_deposit_into_new_account(self, authenticated_client, db_session):
        account = await _open(authenticated_client)

        response = await authenticated_client.post(
            "/transactions/deposit",
            json={"account_id": account["id"], "amount": "1000.00"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["new_balance"] == "1000.00"

        txn = body["transaction"]
        assert txn["type"] == "deposit"
        assert txn["amount"] == "1000.00"
        assert txn["to_account_id"] == account["id"]
        assert txn["from_account_id"] is None
        assert txn["from_display"] == "CASH IN"
        assert txn["to_display"] == account["account_number"]
        assert await _count_transactions(db_session) == 1

    async def test_deposit_into_foreign_account_forbidden(self, authenticated_client, second_authenticated_client):
        theirs = await _open(second_authenticated_client)
        response = await authenticated_client.post(
            "/transactions/deposit",
            json={"account_id": theirs["id"], "amount": "10.00"},
        )
        assert response.status_code == 403

    async def test_deposit_into_unknown_account(self, authenticated_client):
        response = await authenticated_client.post(
            "/transactions/deposit",
            json={"account_id": 99999, "amount": "10.00"},
        )
        assert response.status_code == 404


class TestWithdraw:

    async def test_overdraw_changes_nothing(self, authenticated_client, db_session):
        account = await _funded(authenticated_client, "1000.00")

        response = await authenticated_client.post(
            "/transactions/withdraw",
            json={"account_id": account["id"], "amount": "1500.00"},
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error_type"] == "insufficient_funds"
        assert body["requested"] == "1500.00"
        assert body["available"] == "1000.00"

        assert await _balance(authenticated_client, account["id"]) == "1000.00"
        assert await _count_transactions(db_session) == 1

    async def test_exact_balance_can_be_withdrawn(self, authenticated_client):
        account = await _funded(authenticated_client, "75.50")

        response = await authenticated_client.post(
            "/transactions/withdraw",
            json={"account_id": account["id"], "amount": "75.50"},
        )
        assert response.status_code == 201
        assert response.json()["new_balance"] == "0.00"
        assert response.json()["transaction"]["to_display"] == "CASH OUT"

    async def test_withdraw_from_foreign_account_forbidden(self, authenticated_client, second_authenticated_client):
        theirs = await _funded(second_authenticated_client, "100.00")
        response = await authenticated_client.post(
            "/transactions/withdraw",
            json={"account_id": theirs["id"], "amount": "10.00"},
        )
        assert response.status_code == 403
        assert await _balance(second_authenticated_client, theirs["id"]) == "100.00"


class TestTransfer:

    async def test_transfer_between_accounts(self, authenticated_client, db_session):
        source = await _funded(authenticated_client, "1000.00")
        destination = await _funded(authenticated_client, "5000.00")

        response = await authenticated_client.post(
            "/transactions/transfer",
            json={
                "from_account_id": source["id"],
                "to_account_id": destination["id"],
                "amount": "200.00",
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["from_balance"] == "800.00"
        assert body["to_balance"] == "5200.00"
        assert body["transaction"]["type"] == "transfer"
        assert body["transaction"]["from_account_id"] == source["id"]
        assert body["transaction"]["to_account_id"] == destination["id"]
        assert body["transaction"]["from_display"] == source["account_number"]
        assert body["transaction"]["to_display"] == destination["account_number"]

        transfers = (
            await db_session.execute(select(Transaction).where(Transaction.type == "transfer"))
        ).scalars().all()
        assert len(transfers) == 1

    async def test_transfer_to_another_member(self, authenticated_client, second_authenticated_client):
        mine = await _funded(authenticated_client, "100.00")
        theirs = await _open(second_authenticated_client)

        response = await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": mine["id"], "to_account_id": theirs["id"], "amount": "40.00"},
        )
        assert response.status_code == 201
        assert await _balance(second_authenticated_client, theirs["id"]) == "40.00"

    async def test_transfer_from_foreign_account_forbidden(self, authenticated_client, second_authenticated_client):
        theirs = await _funded(second_authenticated_client, "100.00")
        mine = await _open(authenticated_client)

        response = await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": theirs["id"], "to_account_id": mine["id"], "amount": "40.00"},
        )
        assert response.status_code == 403
        assert await _balance(second_authenticated_client, theirs["id"]) == "100.00"

    async def test_same_account_rejected(self, authenticated_client):
        account = await _funded(authenticated_client, "100.00")
        response = await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": account["id"], "to_account_id": account["id"], "amount": "10.00"},
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "same_account_transfer"

    async def test_insufficient_funds_rolls_back_both_sides(self, authenticated_client, db_session):
        source = await _funded(authenticated_client, "10.00")
        destination = await _open(authenticated_client)

        response = await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": source["id"], "to_account_id": destination["id"], "amount": "10.01"},
        )
        assert response.status_code == 400
        assert await _balance(authenticated_client, source["id"]) == "10.00"
        assert await _balance(authenticated_client, destination["id"]) == "0.00"
        assert await _count_transactions(db_session) == 1

    async def test_exact_balance_can_be_transferred(self, authenticated_client):
        source = await _funded(authenticated_client, "10.00")
        destination = await _open(authenticated_client)

        response = await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": source["id"], "to_account_id": destination["id"], "amount": "10.00"},
        )
        assert response.status_code == 201
        assert response.json()["from_balance"] == "0.00"

    async def test_unknown_destination(self, authenticated_client):
        source = await _funded(authenticated_client, "10.00")
        response = await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": source["id"], "to_account_id": 99999, "amount": "1.00"},
        )
        assert response.status_code == 404


class TestExternalIncoming:

    async def test_credit_by_iban(self, authenticated_client, external_client):
        account = await _funded(authenticated_client, "300.00")

        response = await external_client.post(
            "/transactions/external/incoming",
            json={
                "iban": account["iban_formatted"],
                "sender_name": "ACME GmbH",
                "sender_iban": "GB82WEST12345698765432",
                "amount": "150.00",
                "reference": "Invoice 42",
            },
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["new_balance"] == "450.00"
        assert body["transaction"]["type"] == "external_incoming"
        assert body["transaction"]["to_account_id"] == account["id"]
        assert body["transaction"]["external_from_name"] == "ACME GmbH"
        assert body["transaction"]["external_from_iban"] == "GB82WEST12345698765432"
        assert body["transaction"]["from_display"] == "ACME GmbH"

        assert await _balance(authenticated_client, account["id"]) == "450.00"

    async def test_sender_iban_required(self, authenticated_client, external_client):
        account = await _open(authenticated_client)
        payload = _incoming(account["iban"])
        del payload["sender_iban"]

        response = await external_client.post("/transactions/external/incoming", json=payload)
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"
        assert await _balance(authenticated_client, account["id"]) == "0.00"

    async def test_unknown_iban(self, external_client):
        response = await external_client.post(
            "/transactions/external/incoming",
            json=_incoming("DE89370400440532013000"),
        )
        assert response.status_code == 404

    async def test_wrong_key(self, authenticated_client, make_client):
        account = await _open(authenticated_client)
        ac = await make_client()
        response = await ac.post(
            "/transactions/external/incoming",
            json=_incoming(account["iban"]),
            headers={"X-External-Api-Key": "wrong"},
        )
        assert response.status_code == 401
        assert response.json()["error_type"] == "invalid_api_key"
        assert await _balance(authenticated_client, account["id"]) == "0.00"

    async def test_missing_key(self, client):
        response = await client.post(
            "/transactions/external/incoming",
            json=_incoming("DE89370400440532013000"),
        )
        assert response.status_code == 401

    async def test_alternate_header(self, authenticated_client, make_client):
        account = await _open(authenticated_client)
        ac = await make_client()
        response = await ac.post(
            "/transactions/external/incoming",
            json=_incoming(account["iban"]),
            headers={"X-Api-Key": settings.EXTERNAL_PAYMENTS_API_KEY},
        )
        assert response.status_code == 201

    async def test_unconfigured_key(self, external_client, monkeypatch):
        monkeypatch.setattr(settings, "EXTERNAL_PAYMENTS_API_KEY", None)
        response = await external_client.post(
            "/transactions/external/incoming",
            json=_incoming("DE89370400440532013000"),
        )
        assert response.status_code == 503
        assert response.json()["error_type"] == "service_not_configured"

    async def test_session_is_not_enough(self, authenticated_client):
        account = await _open(authenticated_client)
        response = await authenticated_client.post(
            "/transactions/external/incoming",
            json=_incoming(account["iban"]),
        )
        assert response.status_code == 401


class TestExternalOutgoing:

    async def test_pay_external_iban(self, authenticated_client, db_session):
        account = await _funded(authenticated_client, "100.00")

        response = await authenticated_client.post(
            "/transactions/external/outgoing",
            json={
                "from_account_id": account["id"],
                "recipient_name": "Landlord",
                "recipient_iban": "FR14 2004 1010 0505 0001 3M02 606",
                "amount": "60.00",
                "reference": "Rent",
            },
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["new_balance"] == "40.00"
        assert body["transaction"]["type"] == "external_outgoing"
        assert body["transaction"]["to_display"] == "Landlord"
        assert body["transaction"]["external_to_iban"] == "FR1420041010050500013M02606"

        row = (
            await db_session.execute(select(Transaction).where(Transaction.id == body["transaction"]["id"]))
        ).scalar_one()
        assert row.external_to_iban.startswith("IBAN::")

    async def test_pay_more_than_balance(self, authenticated_client):
        account = await _funded(authenticated_client, "100.00")
        response = await authenticated_client.post(
            "/transactions/external/outgoing",
            json={
                "from_account_id": account["id"],
                "recipient_name": "Landlord",
                "recipient_iban": "FR1420041010050500013M02606",
                "amount": "100.01",
            },
        )
        assert response.status_code == 400
        assert await _balance(authenticated_client, account["id"]) == "100.00"


class TestHistory:

    async def test_scoped_to_caller(self, authenticated_client, second_authenticated_client):
        await _funded(authenticated_client, "10.00")
        await _funded(second_authenticated_client, "20.00")

        response = await authenticated_client.get("/transactions")
        assert response.status_code == 200
        body = response.json()
        assert [t["amount"] for t in body["transactions"]] == ["10.00"]
        assert body["pagination"]["total"] == 1

    async def test_transfer_visible_to_both_members(self, authenticated_client, second_authenticated_client):
        mine = await _funded(authenticated_client, "100.00")
        theirs = await _open(second_authenticated_client)
        await authenticated_client.post(
            "/transactions/transfer",
            json={"from_account_id": mine["id"], "to_account_id": theirs["id"], "amount": "5.00"},
        )

        response = await second_authenticated_client.get("/transactions")
        transactions = response.json()["transactions"]
        assert len(transactions) == 1
        assert transactions[0]["from_display"] == mine["account_number"]
        assert transactions[0]["to_display"] == theirs["account_number"]

    async def test_pagination(self, authenticated_client):
        account = await _open(authenticated_client)
        for amount in ("1.00", "2.00", "3.00", "4.00", "5.00"):
            await authenticated_client.post(
                "/transactions/deposit",
                json={"account_id": account["id"], "amount": amount},
            )

        first = (await authenticated_client.get("/transactions", params={"page": 1, "limit": 2})).json()
        assert [t["amount"] for t in first["transactions"]] == ["5.00", "4.00"]
        assert first["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}

        last = (await authenticated_client.get("/transactions", params={"page": 3, "limit": 2})).json()
        assert [t["amount"] for t in last["transactions"]] == ["1.00"]

    async def test_type_filter(self, authenticated_client):
        account = await _funded(authenticated_client, "50.00")
        await authenticated_client.post(
            "/transactions/withdraw",
            json={"account_id": account["id"], "amount": "5.00"},
        )

        body = (await authenticated_client.get("/transactions", params={"type": "withdrawal"})).json()
        assert [t["type"] for t in body["transactions"]] == ["withdrawal"]
        assert body["pagination"]["total"] == 1

    async def test_date_filter_end_is_inclusive(self, authenticated_client):
        await _funded(authenticated_client, "50.00")
        today = datetime.now(timezone.utc).date()

        same_day = await authenticated_client.get(
            "/transactions",
            params={"startDate": today.isoformat(), "endDate": today.isoformat()},
        )
        assert same_day.json()["pagination"]["total"] == 1

        future = await authenticated_client.get(
            "/transactions", params={"startDate": (today + timedelta(days=1)).isoformat()}
        )
        assert future.json()["pagination"]["total"] == 0

        past = await authenticated_client.get(
            "/transactions", params={"endDate": (today - timedelta(days=1)).isoformat()}
        )
        assert past.json()["pagination"]["total"] == 0

    async def test_empty_history(self, authenticated_client):
        body = (await authenticated_client.get("/transactions")).json()
        assert body["transactions"] == []
        assert body["pagination"]["pages"] == 0

    async def test_requires_session(self, client):
        assert (await client.get("/transactions")).status_code == 401


class TestMovementService:

    async def test_conditional_debit_refuses_overdraw(self, db_session, user):
        account = await account_service.create_account(db_session, user.id)
        await account_service.adjust_balance(db_session, account, 500)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await account_service.adjust_balance(db_session, account, -501)
        assert exc_info.value.available_cents == 500
        assert account.balance_cents == 500

    async def test_debit_to_zero(self, db_session, user):
        account = await account_service.create_account(db_session, user.id)
        await account_service.adjust_balance(db_session, account, 500)
        assert await account_service.adjust_balance(db_session, account, -500) == 0

    async def test_second_debit_sees_first(self, db_session, user):
        """Two debits that each fit the opening balance cannot both succeed."""
        account = await account_service.create_account(db_session, user.id)
        await account_service.adjust_balance(db_session, account, 1000)
        await account_service.adjust_balance(db_session, account, -800)

        with pytest.raises(InsufficientFundsError):
            await account_service.adjust_balance(db_session, account, -800)
        assert account.balance_cents == 200

    async def test_transfer_same_account_checked_first(self, db_session, user):
        account = await account_service.create_account(db_session, user.id)
        with pytest.raises(SameAccountTransferError):
            await movement_service.transfer(db_session, account.id, account.id, 0, user_id=user.id)

    async def test_reconciliation_after_movements(self, db_session, user, other_user):
        mine = await account_service.create_account(db_session, user.id)
        theirs = await account_service.create_account(db_session, other_user.id)

        await movement_service.deposit(db_session, mine.id, user.id, 10_000)
        await movement_service.transfer(db_session, mine.id, theirs.id, 2_500, user_id=user.id)
        await movement_service.withdraw(db_session, mine.id, user.id, 1_000)
        await movement_service.external_outgoing(
            db_session, mine.id, user.id, "Utility Co", "DE89370400440532013000", 499
        )
        await db_session.commit()

        result = await account_service.get_balance(db_session, mine.id, user.id)
        assert result["balance_cents"] == 10_000 - 2_500 - 1_000 - 499
        assert result["match"] is True

        other = await account_service.get_balance(db_session, theirs.id, other_user.id)
        assert other["balance_cents"] == 2_500
        assert other["match"] is True

    async def test_movement_result_balances(self, db_session, user, other_user):
        mine = await account_service.create_account(db_session, user.id)
        theirs = await account_service.create_account(db_session, other_user.id)
        await movement_service.deposit(db_session, mine.id, user.id, 1_000)

        result = await movement_service.transfer(db_session, mine.id, theirs.id, 250, user_id=user.id)
        assert result.balances == {mine.id: 750, theirs.id: 250}
        assert str(result.balance_of(mine.id)) == "7.50"


# ---------------------------------------------------------------------------
# Two sessions, two connections
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions on a file-backed database, each on its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


async def _seed_funded_account(factory, balance_cents: int) -> tuple[int, int]:
    async with factory() as db:
        owner = User(username="kim", email="kim@example.com", hashed_password=hash_password("SecurePass123!"))
        db.add(owner)
        await db.flush()
        account = await account_service.create_account(db, owner.id)
        await movement_service.deposit(db, account.id, owner.id, balance_cents)
        await db.commit()
        return owner.id, account.id


class TestInterleavedSessions:
    """Both sessions read the balance before either one debits."""

    async def test_debit_through_stale_account(self, file_session_factory):
        user_id, account_id = await _seed_funded_account(file_session_factory, 1_000)

        async with file_session_factory() as first, file_session_factory() as second:
            stale = await second.get(Account, account_id)
            assert stale.balance_cents == 1_000

            await movement_service.withdraw(first, account_id, user_id, 800)
            await first.commit()

            # second still holds the pre-debit balance
            assert stale.balance_cents == 1_000
            with pytest.raises(InsufficientFundsError) as exc_info:
                await account_service.adjust_balance(second, stale, -800)
            assert exc_info.value.available_cents == 200
            await second.rollback()

        async with file_session_factory() as db:
            result = await account_service.get_balance(db, account_id, user_id)
        assert result["balance_cents"] == 200
        assert result["match"] is True

    async def test_withdraw_sees_debit_committed_elsewhere(self, file_session_factory):
        user_id, account_id = await _seed_funded_account(file_session_factory, 1_000)

        async with file_session_factory() as first, file_session_factory() as second:
            await second.get(Account, account_id)

            await movement_service.withdraw(first, account_id, user_id, 800)
            await first.commit()

            with pytest.raises(InsufficientFundsError):
                await movement_service.withdraw(second, account_id, user_id, 800)
            await second.rollback()

        async with file_session_factory() as db:
            balance = await db.scalar(select(Account.balance_cents).where(Account.id == account_id))
            logged = await db.scalar(select(func.count(Transaction.id)))
        assert balance == 200
        assert logged == 2
