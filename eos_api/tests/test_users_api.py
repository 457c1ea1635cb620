"""
User account tests — POST /users/profile, /signin, /auth/login and /health.
"""
import pytest


async def _create(client, **fields) -> dict:
    payload = {"email": "alex@example.com", "fullName": "Alex Doe", "password": "hunter22", **fields}
    response = await client.post("/users/profile", json=payload)
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.text}"
    return response.json()


# ---------------------------------------------------------------------------
# Test Group 1: Health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health_returns_ok(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Test Group 2: Profile create / update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_profile_create_returns_token_and_customer(client, payments):
    user = await _create(client, email="Alex@Example.com", missed_goal_payout=5, objective_count=40)

    assert user["email"] == "alex@example.com", "Email must be normalized"
    assert user["accessToken"]
    assert user["tokenType"] == "bearer"
    assert user["missed_goal_payout_cents"] == 500
    assert user["missed_goal_payout"] == 5
    assert user["objective_count"] == 40
    assert user["balanceCents"] == 0
    assert user["stripeCustomerId"] == "cus_test"
    payments.create_customer.assert_awaited_once()


@pytest.mark.asyncio
async def test_profile_create_requires_full_name(client):
    response = await client.post("/users/profile", json={"email": "nameless@example.com"})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"][0]["field"] == "fullName"


@pytest.mark.asyncio
async def test_profile_rejects_malformed_email(client):
    response = await client.post("/users/profile", json={"email": "not-an-email", "fullName": "X"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_only_conflicts_with_existing_email(client):
    await _create(client)

    response = await client.post(
        "/users/profile",
        json={"email": "alex@example.com", "fullName": "Someone Else", "createOnly": True},
    )

    assert response.status_code == 409
    assert "sign in" in response.json()["error"]["message"].lower()


@pytest.mark.asyncio
async def test_profile_update_requires_own_token(client, make_user, auth):
    created = await _create(client)
    other = await make_user()

    anonymous = await client.post("/users/profile", json={"email": "alex@example.com", "objective_count": 10})
    assert anonymous.status_code == 401

    foreign = await client.post(
        "/users/profile",
        json={"email": "alex@example.com", "objective_count": 10},
        headers=auth(other.id),
    )
    assert foreign.status_code == 403

    own = await client.post(
        "/users/profile",
        json={"email": "alex@example.com", "objective_count": 10},
        headers=auth(created["id"]),
    )
    assert own.status_code == 200
    assert own.json()["objective_count"] == 10
    assert own.json()["fullName"] == "Alex Doe", "Unsupplied fields must be left alone"
    assert "accessToken" not in own.json()


@pytest.mark.asyncio
async def test_profile_drops_unknown_recipient_ids(client):
    user = await _create(client, custom_recipient_id="does-not-exist", committedRecipientId="nope")

    assert user["custom_recipient_id"] is None
    assert user["committed_recipient_id"] is None


@pytest.mark.asyncio
async def test_profile_ignores_client_balance(client):
    user = await _create(client, balanceCents=100000)

    assert user["balanceCents"] == 0


# ---------------------------------------------------------------------------
# Test Group 3: Sign-in
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_signin_success(client):
    created = await _create(client)

    response = await client.post("/signin", json={"email": "ALEX@example.com", "password": "hunter22"})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Sign-in successful"
    assert body["user"]["id"] == created["id"]
    assert body["accessToken"]


@pytest.mark.asyncio
async def test_signin_wrong_password(client):
    await _create(client)

    response = await client.post("/signin", json={"email": "alex@example.com", "password": "wrong"})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid email or password."


@pytest.mark.asyncio
async def test_auth_login_alias(client):
    await _create(client)

    response = await client.post("/auth/login", json={"email": "alex@example.com", "password": "hunter22"})

    assert response.status_code == 200
    assert response.json()["user"]["email"] == "alex@example.com"


@pytest.mark.asyncio
async def test_signin_unknown_user(client):
    response = await client.post("/signin", json={"email": "nobody@example.com", "password": "x"})

    assert response.status_code == 401
