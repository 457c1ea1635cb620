"""
Ledger tests — balances, deposits, withdrawals, the withdrawal retry queue
and the charity admin endpoints.
"""
import pytest
from sqlalchemy import select

from eos_api.config import settings
from eos_api.errors import UpstreamFailure
from eos_api.models.ledger import CharityPayoutORM, TransactionORM, WithdrawalRequestORM
from eos_api.models.user import UserORM
from eos_api.services.ledger.deposits import gross_up


async def _balance(session_factory, user_id: str) -> int:
    async with session_factory() as db:
        return (await db.get(UserORM, user_id)).balance_cents


async def _with_payout_account(make_user, make_recipient, **user_fields) -> UserORM:
    user = await make_user(**user_fields)
    await make_recipient(name=user.full_name, email=user.email, processor_account_id="acct_payee")
    return user


# ---------------------------------------------------------------------------
# Test Group 1: Balance and history
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_balance_view(client, make_user, auth):
    user = await make_user(balance_cents=1234)

    response = await client.get(f"/users/{user.id}/balance", headers=auth(user.id))

    assert response.status_code == 200
    assert response.json() == {"balanceCents": 1234, "activeBalanceCents": 1234, "balanceDollars": 12.34}


@pytest.mark.asyncio
async def test_transactions_include_incoming_payouts(client, session_factory, make_user, auth):
    payer = await make_user()
    recipient = await make_user()
    async with session_factory() as db, db.begin():
        db.add(TransactionORM(user_id=payer.id, recipient_user_id=recipient.id, amount_cents=500,
                              type="payout", status="completed", details={"destination": "custom"}))

    response = await client.get(f"/users/{recipient.id}/transactions", headers=auth(recipient.id))

    transactions = response.json()["transactions"]
    assert len(transactions) == 1
    assert transactions[0]["amount_cents"] == 500
    assert transactions[0]["metadata"] == {"destination": "custom"}


# ---------------------------------------------------------------------------
# Test Group 2: Deposits
# ---------------------------------------------------------------------------

def test_gross_up_covers_processing_fees():
    assert gross_up(1000) == 1061
    charged = gross_up(2500)
    assert charged - round(charged * 0.029) - 30 >= 2500


@pytest.mark.asyncio
async def test_create_payment_intent_charges_gross_amount(client, make_user, payments, auth):
    user = await make_user()

    response = await client.post(
        "/create-payment-intent", json={"userId": user.id, "amount": 1000}, headers=auth(user.id)
    )

    assert response.status_code == 200, response.text
    assert response.json()["chargeAmountCents"] == 1061
    assert response.json()["paymentIntentClientSecret"] == "pi_test_secret_123"
    amount, metadata = payments.create_payment_intent.await_args.args
    assert amount == 1061
    assert metadata == {"user_id": user.id, "deposit_cents": "1000"}


@pytest.mark.asyncio
async def test_confirm_deposit_credits_once(client, session_factory, make_user, payments, auth):
    user = await make_user(balance_cents=100)
    payments.retrieve_payment_intent.return_value = {
        "id": "pi_123",
        "status": "succeeded",
        "amount": 1061,
        "amount_received": 1061,
        "metadata": {"user_id": user.id, "deposit_cents": "1000"},
    }
    payload = {"userId": user.id, "paymentIntentId": "pi_123"}

    first = await client.post("/deposits/confirm", json=payload, headers=auth(user.id))
    second = await client.post("/deposits/confirm", json=payload, headers=auth(user.id))

    assert first.json()["credited"] is True
    assert first.json()["balanceCents"] == 1100
    assert second.json()["credited"] is False
    assert await _balance(session_factory, user.id) == 1100


@pytest.mark.asyncio
async def test_confirm_unpaid_deposit_is_rejected(client, make_user, payments, auth):
    user = await make_user()
    payments.retrieve_payment_intent.return_value = {
        "id": "pi_456",
        "status": "requires_payment_method",
        "amount": 1061,
        "amount_received": 0,
        "metadata": {"user_id": user.id, "deposit_cents": "1000"},
    }

    response = await client.post(
        "/deposits/confirm", json={"userId": user.id, "paymentIntentId": "pi_456"}, headers=auth(user.id)
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_confirm_someone_elses_deposit_is_forbidden(client, make_user, payments, auth):
    user = await make_user()
    payments.retrieve_payment_intent.return_value = {
        "id": "pi_789",
        "status": "succeeded",
        "amount": 1061,
        "amount_received": 1061,
        "metadata": {"user_id": "someone-else", "deposit_cents": "1000"},
    }

    response = await client.post(
        "/deposits/confirm", json={"userId": user.id, "paymentIntentId": "pi_789"}, headers=auth(user.id)
    )

    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Test Group 3: Withdrawals
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_withdraw_insufficient_funds(client, make_user, make_recipient, auth):
    user = await _with_payout_account(make_user, make_recipient, balance_cents=300)

    response = await client.post(
        "/withdraw", json={"userId": user.id, "amountCents": 500}, headers=auth(user.id)
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_FUNDS"
    assert error["availableCents"] == 300


@pytest.mark.asyncio
async def test_withdraw_without_payout_account(client, make_user, auth):
    user = await make_user(balance_cents=1000)

    response = await client.post(
        "/withdraw", json={"userId": user.id, "amountCents": 500}, headers=auth(user.id)
    )

    assert response.status_code == 400
    assert response.json()["error"]["details"][0]["field"] == "destination"


@pytest.mark.asyncio
async def test_withdraw_transfers_immediately(client, session_factory, make_user, make_recipient, payments, auth):
    user = await _with_payout_account(make_user, make_recipient, balance_cents=1000)

    response = await client.post(
        "/withdraw", json={"userId": user.id, "amountCents": 400}, headers=auth(user.id)
    )

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "completed"
    assert response.json()["balanceCents"] == 600
    amount, account_id, _, _ = payments.transfer.await_args.args
    assert (amount, account_id) == (400, "acct_payee")

    async with session_factory() as db:
        tx = await db.get(TransactionORM, response.json()["transactionId"])
    assert tx.status == "completed"
    assert tx.processor_reference == "tr_test"


@pytest.mark.asyncio
async def test_withdraw_is_queued_when_transfer_fails(client, make_user, make_recipient, payments, auth):
    user = await _with_payout_account(make_user, make_recipient, balance_cents=1000)
    payments.transfer.side_effect = UpstreamFailure("Platform balance insufficient")

    response = await client.post(
        "/withdraw", json={"userId": user.id, "amountCents": 400}, headers=auth(user.id)
    )

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "queued"
    assert response.json()["balanceCents"] == 600

    pending = await client.get(f"/withdrawals/pending/{user.id}", headers=auth(user.id))
    withdrawals = pending.json()["withdrawals"]
    assert len(withdrawals) == 1
    assert withdrawals[0]["amount_cents"] == 400
    assert withdrawals[0]["last_error"] == "Platform balance insufficient"


# ---------------------------------------------------------------------------
# Test Group 4: Withdrawal queue
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_queue_completes_pending_withdrawal(client, session_factory, make_user, make_recipient, payments, auth):
    user = await _with_payout_account(make_user, make_recipient, balance_cents=1000)
    payments.transfer.side_effect = UpstreamFailure("Platform balance insufficient")
    queued = await client.post(
        "/withdraw", json={"userId": user.id, "amountCents": 400}, headers=auth(user.id)
    )

    payments.transfer.side_effect = None
    response = await client.post("/withdrawals/process-queue")

    assert response.json()["completed"] == 1
    async with session_factory() as db:
        request = await db.get(WithdrawalRequestORM, queued.json()["withdrawalRequestId"])
        tx = await db.get(TransactionORM, queued.json()["transactionId"])
    assert request.status == "completed"
    assert tx.status == "completed"
    assert tx.processor_reference == "tr_test"
    assert await _balance(session_factory, user.id) == 600


@pytest.mark.asyncio
async def test_queue_refunds_after_max_retries(
    client, session_factory, make_user, make_recipient, payments, auth, monkeypatch
):
    monkeypatch.setattr(settings, "withdrawal_max_retries", 2)
    user = await _with_payout_account(make_user, make_recipient, balance_cents=1000)
    payments.transfer.side_effect = UpstreamFailure("Platform balance insufficient")
    await client.post("/withdraw", json={"userId": user.id, "amountCents": 400}, headers=auth(user.id))

    first = await client.post("/withdrawals/process-queue")
    assert first.json()["results"][0]["outcome"] == "retry"
    assert await _balance(session_factory, user.id) == 600

    second = await client.post("/withdrawals/process-queue")
    assert second.json()["results"][0]["outcome"] == "failed_refunded"
    assert await _balance(session_factory, user.id) == 1000

    third = await client.post("/withdrawals/process-queue")
    assert third.json()["processed"] == 0, "Failed requests leave the queue"

    async with session_factory() as db:
        tx = (await db.execute(select(TransactionORM))).scalar_one()
    assert tx.status == "failed"


# ---------------------------------------------------------------------------
# Test Group 5: Charity admin
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_charity_totals_and_payout(client, session_factory, make_user):
    user = await make_user()
    async with session_factory() as db, db.begin():
        db.add_all([
            CharityPayoutORM(user_id=user.id, charity_name="Red Cross", amount_cents=500),
            CharityPayoutORM(user_id=user.id, charity_name="Red Cross", amount_cents=300),
            CharityPayoutORM(user_id=user.id, charity_name="Food Bank", amount_cents=200),
        ])

    totals = (await client.get("/admin/charity-totals")).json()
    assert totals["grand_total_cents"] == 1000
    by_name = {c["charity_name"]: c for c in totals["charities"]}
    assert by_name["Red Cross"]["pending_cents"] == 800
    assert by_name["Red Cross"]["payout_count"] == 2

    paid = await client.post("/admin/charity-payout/Red Cross")
    assert paid.json()["updated_count"] == 2

    totals = (await client.get("/admin/charity-totals")).json()
    by_name = {c["charity_name"]: c for c in totals["charities"]}
    assert by_name["Red Cross"]["paid_out_cents"] == 800
    assert by_name["Red Cross"]["pending_cents"] == 0
    assert by_name["Food Bank"]["pending_cents"] == 200
