"""
schemas.py — Recipient / invite request contracts (Pydantic v2).

Onboarding fields are all Optional at this layer: missing ones are collected
by invites.hybrid_onboarding() and reported together as one 400 with a detail
per field, instead of FastAPI stopping at the first 422.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateInviteRequest(_CamelModel):
    payer_email: str = Field(alias="payerEmail", min_length=3, max_length=320)
    payer_name: Optional[str] = Field(default=None, alias="payerName", max_length=200)
    phone: str = Field(min_length=4, max_length=32)


class CodeOnlyInviteRequest(_CamelModel):
    payer_email: str = Field(alias="payerEmail", min_length=3, max_length=320)
    payer_name: Optional[str] = Field(default=None, alias="payerName", max_length=200)


class RecipientSignupRequest(_CamelModel):
    invite_code: str = Field(alias="inviteCode", min_length=1, max_length=16)
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    password: Optional[str] = Field(default=None, max_length=128)


class DateOfBirth(BaseModel):
    month: Optional[int] = Field(default=None, ge=1, le=12)
    day: Optional[int] = Field(default=None, ge=1, le=31)
    year: Optional[int] = Field(default=None, ge=1900, le=2100)


class PostalAddress(BaseModel):
    line1: Optional[str] = Field(default=None, max_length=200)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=50)
    postal_code: Optional[str] = Field(default=None, max_length=20)


class OnboardingRequest(_CamelModel):
    invite_code: str = Field(alias="inviteCode", min_length=1, max_length=16)
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    password: Optional[str] = Field(default=None, max_length=128)
    dob: Optional[DateOfBirth] = None
    address: Optional[PostalAddress] = None
    ssn_last4: Optional[str] = Field(default=None, alias="ssnLast4", max_length=8)
    payment_token: Optional[str] = Field(default=None, alias="paymentToken", max_length=200)


class SelectRecipientRequest(_CamelModel):
    recipient_id: str = Field(alias="recipientId", min_length=1, max_length=36)


class CommitDestinationRequest(_CamelModel):
    destination: Literal["charity", "custom"]
    recipient_id: Optional[str] = Field(default=None, alias="recipientId", max_length=36)
    charity: Optional[str] = Field(default=None, max_length=120)
