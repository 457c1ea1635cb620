"""
gateways.py — narrow wrappers around the payment processor and SMS provider.

Both clients are constructed once in the FastAPI lifespan and stored on
app.state; routes receive them through get_payments() / get_messaging() so
tests can swap in fakes. The vendor SDKs are synchronous, so every call is
pushed to a worker thread with asyncio.to_thread() to keep the event loop free.
"""
import asyncio
import logging
from typing import Any, Optional, Protocol

import stripe
from fastapi import Request
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from eos_api.config import settings
from eos_api.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class InsufficientPlatformFunds(UpstreamFailure):
    """The platform account cannot cover a transfer right now; retry later."""

    code = "PLATFORM_FUNDS_UNAVAILABLE"


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class PaymentGateway(Protocol):
    async def create_customer(self, email: str, name: str, phone: Optional[str]) -> str: ...

    async def create_payee_account(self, details: dict[str, Any]) -> str: ...

    async def delete_account(self, account_id: str) -> None: ...

    async def transfer(
        self, amount_cents: int, account_id: str, description: str, metadata: dict[str, str]
    ) -> str: ...

    async def create_payment_intent(
        self, amount_cents: int, metadata: dict[str, str]
    ) -> dict[str, Any]: ...

    async def retrieve_payment_intent(self, intent_id: str) -> dict[str, Any]: ...


class MessagingGateway(Protocol):
    async def send_sms(self, to: str, body: str) -> Optional[str]: ...


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------

class StripePaymentGateway:
    """
    Stripe-backed PaymentGateway.

    Errors surface as UpstreamFailure carrying Stripe's own message; a transfer
    refused for lack of platform balance raises InsufficientPlatformFunds so the
    caller can queue it.
    """

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.api_key, **kwargs)
        except stripe.InvalidRequestError as exc:
            if exc.code == "balance_insufficient":
                raise InsufficientPlatformFunds(exc.user_message or str(exc)) from exc
            raise UpstreamFailure(exc.user_message or str(exc)) from exc
        except stripe.StripeError as exc:
            raise UpstreamFailure(exc.user_message or str(exc)) from exc

    async def create_customer(self, email: str, name: str, phone: Optional[str]) -> str:
        customer = await self._call(
            stripe.Customer.create, email=email, name=name, phone=phone or None
        )
        logger.info("Stripe customer created customer_id=%s", customer.id)
        return customer.id

    async def create_payee_account(self, details: dict[str, Any]) -> str:
        """Custom connected account with manual payouts, individual business type."""
        name_parts = details["name"].strip().split(" ")
        first_name = name_parts[0]
        last_name = " ".join(name_parts[1:]) or first_name
        dob = details["dob"]
        address = details["address"]
        account = await self._call(
            stripe.Account.create,
            type="custom",
            country="US",
            email=details["email"],
            business_type="individual",
            capabilities={"transfers": {"requested": True}},
            individual={
                "first_name": first_name,
                "last_name": last_name,
                "email": details["email"],
                "phone": details.get("phone") or None,
                "dob": {"day": int(dob["day"]), "month": int(dob["month"]), "year": int(dob["year"])},
                "address": {
                    "line1": address["line1"],
                    "city": address["city"],
                    "state": address["state"],
                    "postal_code": address["postal_code"],
                    "country": "US",
                },
                "ssn_last_4": details["ssn_last4"],
            },
            external_account=details["payment_token"],
            tos_acceptance={"date": int(details["tos_date"]), "ip": details["tos_ip"]},
            settings={"payouts": {"schedule": {"interval": "manual"}}},
        )
        logger.info("Stripe payee account created account_id=%s", account.id)
        return account.id

    async def delete_account(self, account_id: str) -> None:
        await self._call(stripe.Account.delete, account_id)
        logger.info("Stripe payee account deleted account_id=%s", account_id)

    async def transfer(
        self, amount_cents: int, account_id: str, description: str, metadata: dict[str, str]
    ) -> str:
        transfer = await self._call(
            stripe.Transfer.create,
            amount=amount_cents,
            currency="usd",
            destination=account_id,
            description=description,
            metadata=metadata,
        )
        logger.info("Stripe transfer created transfer_id=%s amount_cents=%d", transfer.id, amount_cents)
        return transfer.id

    async def create_payment_intent(
        self, amount_cents: int, metadata: dict[str, str]
    ) -> dict[str, Any]:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount_cents,
            currency="usd",
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return {"id": intent.id, "client_secret": intent.client_secret, "amount": intent.amount}

    async def retrieve_payment_intent(self, intent_id: str) -> dict[str, Any]:
        intent = await self._call(stripe.PaymentIntent.retrieve, intent_id)
        return {
            "id": intent.id,
            "status": intent.status,
            "amount": intent.amount,
            "amount_received": intent.amount_received,
            "metadata": dict(intent.metadata or {}),
        }


# ---------------------------------------------------------------------------
# Twilio
# ---------------------------------------------------------------------------

class TwilioMessagingGateway:
    """Twilio-backed MessagingGateway. Returns the message SID."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self.client = TwilioClient(account_sid, auth_token)
        self.from_number = from_number

    async def send_sms(self, to: str, body: str) -> Optional[str]:
        try:
            message = await asyncio.to_thread(
                self.client.messages.create, to=to, from_=self.from_number, body=body
            )
        except TwilioRestException as exc:
            raise UpstreamFailure(f"SMS delivery failed: {exc.msg}") from exc
        logger.info("SMS sent sid=%s", message.sid)
        return message.sid


class DisabledMessagingGateway:
    """Used when Twilio is not configured — logs and sends nothing."""

    async def send_sms(self, to: str, body: str) -> Optional[str]:
        logger.warning("SMS not sent — Twilio is not configured")
        return None


def build_payment_gateway() -> PaymentGateway:
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY not set — payment calls will fail upstream")
    return StripePaymentGateway(settings.stripe_secret_key)


def build_messaging_gateway() -> MessagingGateway:
    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number:
        return TwilioMessagingGateway(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_from_number,
        )
    return DisabledMessagingGateway()


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

def get_payments(request: Request) -> PaymentGateway:
    return request.app.state.payments


def get_messaging(request: Request) -> MessagingGateway:
    return request.app.state.messaging
