"""
schemas.py — Objective request contracts (Pydantic v2).

Field names follow what the mobile client already sends: camelCase for the
progress endpoints, snake_case for objective settings.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eos_api.services.objectives.sessions import parse_deadline, validate_timezone


def _check_deadline(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    return parse_deadline(value).strftime("%H:%M")


class LogProgressRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    rep_count: int = Field(alias="repCount", gt=0)


class CompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    completed_count: Optional[int] = Field(default=None, alias="completedCount", ge=0)


class ObjectiveSettingsRequest(BaseModel):
    """Only supplied fields are applied. missed_goal_payout is in dollars."""

    objective_type: Optional[str] = Field(default=None, min_length=1, max_length=32)
    objective_count: Optional[int] = Field(default=None, gt=0)
    objective_schedule: Optional[Literal["daily", "weekdays"]] = None
    objective_deadline: Optional[str] = None
    missed_goal_payout: Optional[float] = Field(default=None, ge=0)
    timezone: Optional[str] = Field(default=None, max_length=64)

    @field_validator("objective_deadline")
    @classmethod
    def deadline_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_deadline(v)

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else validate_timezone(v)
