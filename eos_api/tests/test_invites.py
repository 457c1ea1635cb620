"""
Recipient invite tests — creation, verification, signup, hybrid onboarding,
selection and the payer's invite list.
"""
import pytest
from sqlalchemy import select

from eos_api.models.recipient import PayoutRuleORM, RecipientInviteORM, RecipientORM
from eos_api.models.user import UserORM
from eos_api.security import create_access_token
from eos_api.services.recipients import invites
from eos_api.services.recipients.schemas import OnboardingRequest

ONBOARDING_BODY = {
    "name": "Jamie Rivera",
    "email": "jamie@example.com",
    "phone": "+15550001111",
    "dob": {"month": 4, "day": 12, "year": 1990},
    "address": {"line1": "1 Main St", "city": "Austin", "state": "TX", "postal_code": "78701"},
    "ssnLast4": "1234",
    "paymentToken": "btok_test",
}


async def _code_only_invite(client, payer) -> str:
    response = await client.post(
        "/recipient-invites/code-only",
        json={"payerEmail": payer.email},
        headers={"Authorization": f"Bearer {create_access_token(payer.id)}"},
    )
    assert response.status_code == 200, response.text
    return response.json()["inviteCode"]


async def _signup(client, code: str, name: str, email: str) -> dict:
    response = await client.post(
        "/recipient-signup", json={"inviteCode": code, "name": name, "email": email}
    )
    assert response.status_code == 200, response.text
    return response.json()


# ---------------------------------------------------------------------------
# Test Group 1: Creating invites
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sms_invite_sends_code(client, make_user, messaging, auth):
    payer = await make_user(full_name="Pat Payer")

    response = await client.post(
        "/recipient-invites",
        json={"payerEmail": payer.email, "phone": "+15550002222"},
        headers=auth(payer.id),
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "pending"
    assert body["resent"] is False
    assert body["smsSent"] is True
    messaging.send_sms.assert_awaited_once()
    phone, message = messaging.send_sms.await_args.args
    assert phone == "+15550002222"
    assert body["inviteCode"] in message
    assert "Pat Payer" in message


@pytest.mark.asyncio
async def test_repeat_invite_reuses_pending_code(client, make_user, auth):
    payer = await make_user()
    payload = {"payerEmail": payer.email, "phone": "+15550002222"}

    first = await client.post("/recipient-invites", json=payload, headers=auth(payer.id))
    second = await client.post("/recipient-invites", json=payload, headers=auth(payer.id))

    assert second.json()["resent"] is True
    assert second.json()["inviteCode"] == first.json()["inviteCode"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, extra",
    [("/recipient-invites/code-only", {}), ("/recipient-invites", {"phone": "+15550002222"})],
)
async def test_invite_creation_requires_token(client, make_user, messaging, path, extra):
    payer = await make_user()

    response = await client.post(path, json={"payerEmail": payer.email, **extra})

    assert response.status_code == 401
    messaging.send_sms.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, extra",
    [("/recipient-invites/code-only", {}), ("/recipient-invites", {"phone": "+15550002222"})],
)
async def test_invite_for_another_payer_is_forbidden(
    client, session_factory, make_user, messaging, auth, path, extra
):
    victim = await make_user()
    caller = await make_user()

    response = await client.post(path, json={"payerEmail": victim.email, **extra}, headers=auth(caller.id))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"
    messaging.send_sms.assert_not_awaited()
    async with session_factory() as db:
        minted = (await db.execute(select(RecipientInviteORM))).scalars().all()
    assert minted == [], "No invite may be created for someone else"


@pytest.mark.asyncio
async def test_invite_for_unknown_payer_is_forbidden(client, make_user, auth):
    caller = await make_user()

    response = await client.post(
        "/recipient-invites/code-only", json={"payerEmail": "ghost@example.com"}, headers=auth(caller.id)
    )

    assert response.status_code == 403


def test_generated_codes_use_unambiguous_alphabet():
    code = invites.generate_code()
    assert len(code) == 8
    assert not set(code) & set("01IO"), f"Ambiguous characters in {code}"


# ---------------------------------------------------------------------------
# Test Group 2: Verify and signup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_invite_round_trip(client, session_factory, make_user):
    payer = await make_user(full_name="Pat Payer", missed_goal_payout_cents=500)
    code = await _code_only_invite(client, payer)

    verified = await client.get(f"/verify-invite/{code}")
    assert verified.status_code == 200
    assert verified.json()["payerName"] == "Pat Payer"
    assert verified.json()["payerEmail"] == payer.email
    assert verified.json()["payoutAmountCents"] == 500

    accepted = await _signup(client, code, "Robin", "Robin@Example.com")
    assert accepted["success"] is True
    assert accepted["selected"] is True
    assert accepted["inviteStatus"] == "accepted"

    reused = await client.get(f"/verify-invite/{code}")
    assert reused.status_code == 409
    assert reused.json()["error"]["message"] == "Invite already used"

    async with session_factory() as db:
        recipient = await db.get(RecipientORM, accepted["recipientId"])
        assert recipient.email == "robin@example.com"
        refreshed_payer = await db.get(UserORM, payer.id)
        assert refreshed_payer.custom_recipient_id == recipient.id
        assert refreshed_payer.payout_destination == "custom"
        rules = (await db.execute(select(PayoutRuleORM))).scalars().all()
        assert [r.fixed_amount_cents for r in rules] == [500]
        platform_user = (
            await db.execute(select(UserORM).where(UserORM.email == "robin@example.com"))
        ).scalar_one_or_none()
        assert platform_user is not None, "Recipient must get a platform account"


@pytest.mark.asyncio
async def test_verify_unknown_code_is_404(client):
    response = await client.get("/verify-invite/NOPE2345")

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Invalid invite code"


@pytest.mark.asyncio
async def test_signup_twice_is_conflict(client, make_user):
    payer = await make_user()
    code = await _code_only_invite(client, payer)
    await _signup(client, code, "Robin", "robin@example.com")

    response = await client.post(
        "/recipient-signup", json={"inviteCode": code, "name": "Robin", "email": "robin@example.com"}
    )

    assert response.status_code == 409


# ---------------------------------------------------------------------------
# Test Group 3: Hybrid onboarding
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_onboarding_reports_every_missing_field(client, make_user, payments):
    payer = await make_user()
    code = await _code_only_invite(client, payer)

    response = await client.post(
        "/recipient-onboarding", json={"inviteCode": code, "name": "Jamie"}
    )

    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["error"]["details"]}
    for expected in ("email", "dob.month", "address.line1", "ssnLast4", "paymentToken"):
        assert expected in fields, f"Missing {expected} in {fields}"
    assert "name" not in fields
    payments.create_payee_account.assert_not_awaited()


@pytest.mark.asyncio
async def test_onboarding_provisions_payee_account(client, session_factory, make_user, payments, messaging):
    payer = await make_user(full_name="Pat Payer", missed_goal_payout_cents=750)
    code = await _code_only_invite(client, payer)

    response = await client.post(
        "/recipient-onboarding",
        json={"inviteCode": code, **ONBOARDING_BODY},
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
    )

    assert response.status_code == 200, response.text
    assert response.json()["stripeAccountId"] == "acct_test"
    details = payments.create_payee_account.await_args.args[0]
    assert details["tos_ip"] == "203.0.113.9"
    assert details["ssn_last4"] == "1234"

    _, message = messaging.send_sms.await_args.args
    assert "$7.50" in message
    assert "bank account" in message

    async with session_factory() as db:
        recipient = await db.get(RecipientORM, response.json()["recipientId"])
        assert recipient.processor_account_id == "acct_test"
        invite = (
            await db.execute(select(RecipientInviteORM).where(RecipientInviteORM.invite_code == code))
        ).scalar_one()
        assert invite.status == "accepted"


@pytest.mark.asyncio
async def test_onboarding_failure_deletes_payee_account(
    session_factory, make_user, payments, messaging, monkeypatch
):
    payer = await make_user()
    async with session_factory() as db, db.begin():
        code = (await invites.create_code_only_invite(db, payer.email, payer.id))["inviteCode"]

    async def _broken_accept(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(invites, "_accept", _broken_accept)
    req = OnboardingRequest(inviteCode=code, **ONBOARDING_BODY)

    async with session_factory() as db:
        with pytest.raises(RuntimeError):
            await invites.hybrid_onboarding(db, payments, messaging, req, "127.0.0.1", 1700000000)

    payments.delete_account.assert_awaited_once_with("acct_test")
    messaging.send_sms.assert_not_awaited()


# ---------------------------------------------------------------------------
# Test Group 4: Selection and listing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_invite_list_order_follows_selection(client, make_user, auth):
    payer = await make_user()
    zed = await _signup(client, await _code_only_invite(client, payer), "Zed", "zed@example.com")
    amy = await _signup(client, await _code_only_invite(client, payer), "Amy", "amy@example.com")
    pending_code = await _code_only_invite(client, payer)

    assert zed["selected"] is True
    assert amy["selected"] is False
    assert amy["inviteStatus"] == "available"

    listed = (await client.get(f"/users/{payer.id}/invites", headers=auth(payer.id))).json()["invites"]
    assert [e["recipient"]["name"] if e["recipient"] else None for e in listed] == ["Zed", "Amy", None]
    assert listed[0]["isSelected"] is True
    assert listed[2]["invite_code"] == pending_code

    selected = await client.post(
        f"/users/{payer.id}/select-recipient",
        json={"recipientId": amy["recipientId"]},
        headers=auth(payer.id),
    )
    assert selected.status_code == 200, selected.text

    listed = (await client.get(f"/users/{payer.id}/invites", headers=auth(payer.id))).json()["invites"]
    assert [e["status"] for e in listed] == ["accepted", "available", "pending"]
    assert listed[0]["recipient"]["name"] == "Amy"


@pytest.mark.asyncio
async def test_select_foreign_recipient_is_404(client, make_user, make_recipient, auth):
    payer = await make_user()
    stranger = await make_recipient()

    response = await client.post(
        f"/users/{payer.id}/select-recipient",
        json={"recipientId": stranger.id},
        headers=auth(payer.id),
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_recipient_summary(client, make_user, auth):
    payer = await make_user()
    before = (await client.get(f"/users/{payer.id}/recipient", headers=auth(payer.id))).json()
    assert before["hasRecipient"] is False

    await _signup(client, await _code_only_invite(client, payer), "Robin", "robin@example.com")

    after = (await client.get(f"/users/{payer.id}/recipient", headers=auth(payer.id))).json()
    assert after["hasRecipient"] is True
    assert after["recipient"]["name"] == "Robin"
    assert after["destination"] == "custom"


# ---------------------------------------------------------------------------
# Test Group 5: Committing the destination
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_commit_custom_without_recipient_is_400(client, make_user, auth):
    payer = await make_user()

    response = await client.post(
        f"/users/{payer.id}/commit-destination", json={"destination": "custom"}, headers=auth(payer.id)
    )

    assert response.status_code == 400
    assert response.json()["error"]["details"][0]["field"] == "recipientId"


@pytest.mark.asyncio
async def test_commit_charity_uses_default_name(client, session_factory, make_user, auth):
    payer = await make_user()

    response = await client.post(
        f"/users/{payer.id}/commit-destination", json={"destination": "charity"}, headers=auth(payer.id)
    )

    assert response.status_code == 200
    async with session_factory() as db:
        user = await db.get(UserORM, payer.id)
    assert user.destination_committed is True
    assert user.committed_destination == "charity"
    assert user.committed_charity == "General Charity Fund"


@pytest.mark.asyncio
async def test_select_after_commit_is_conflict(client, session_factory, make_user, auth):
    payer = await make_user()
    robin = await _signup(client, await _code_only_invite(client, payer), "Robin", "robin@example.com")
    amy = await _signup(client, await _code_only_invite(client, payer), "Amy", "amy@example.com")
    committed = await client.post(
        f"/users/{payer.id}/commit-destination", json={"destination": "custom"}, headers=auth(payer.id)
    )
    assert committed.status_code == 200, committed.text

    response = await client.post(
        f"/users/{payer.id}/select-recipient",
        json={"recipientId": amy["recipientId"]},
        headers=auth(payer.id),
    )

    assert response.status_code == 409
    async with session_factory() as db:
        user = await db.get(UserORM, payer.id)
    assert user.custom_recipient_id == robin["recipientId"]
    assert user.committed_recipient_id == robin["recipientId"]


@pytest.mark.asyncio
async def test_signup_after_charity_commit_keeps_destination(client, session_factory, make_user, auth):
    payer = await make_user()
    await client.post(
        f"/users/{payer.id}/commit-destination", json={"destination": "charity"}, headers=auth(payer.id)
    )

    accepted = await _signup(client, await _code_only_invite(client, payer), "Robin", "robin@example.com")

    assert accepted["selected"] is False
    async with session_factory() as db:
        user = await db.get(UserORM, payer.id)
    assert user.payout_destination == "charity"
    assert user.custom_recipient_id is None
