"""
schemas.py — User profile and sign-in contracts (Pydantic v2).

The profile body mixes camelCase and snake_case keys because that is what the
mobile client sends; aliases keep the Python side snake_case throughout.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eos_api.services.objectives.sessions import parse_deadline, validate_timezone

Destination = Literal["charity", "custom"]


def _check_email(value: str) -> str:
    value = value.strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        raise ValueError("Invalid email address")
    return value


class ProfileRequest(BaseModel):
    """
    POST /users/profile body.

    Every field except email is optional; on update only supplied fields are
    written. missed_goal_payout is in dollars.
    """
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=320)
    full_name: Optional[str] = Field(default=None, alias="fullName", max_length=200)
    phone: Optional[str] = Field(default=None, max_length=32)
    password: Optional[str] = Field(default=None, max_length=128)
    timezone: Optional[str] = Field(default=None, max_length=64)

    objective_type: Optional[str] = Field(default=None, min_length=1, max_length=32)
    objective_count: Optional[int] = Field(default=None, gt=0)
    objective_schedule: Optional[Literal["daily", "weekdays"]] = None
    objective_deadline: Optional[str] = None

    missed_goal_payout: Optional[float] = Field(default=None, ge=0)
    payout_destination: Optional[Destination] = None
    payout_committed: Optional[bool] = Field(default=None, alias="payoutCommitted")

    destination_committed: Optional[bool] = Field(default=None, alias="destinationCommitted")
    committed_destination: Optional[Destination] = Field(default=None, alias="committedDestination")
    committed_charity: Optional[str] = Field(default=None, alias="committedCharity", max_length=120)
    custom_recipient_id: Optional[str] = None
    committed_recipient_id: Optional[str] = Field(default=None, alias="committedRecipientId")

    create_only: bool = Field(default=False, alias="createOnly")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("objective_deadline")
    @classmethod
    def deadline_format(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else parse_deadline(v).strftime("%H:%M")

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else validate_timezone(v)


class SignInRequest(BaseModel):
    email: str = Field(max_length=320)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _check_email(v)
