from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UserCreate(BaseModel):
    telegram_id: int
    username: str | None = Field(default=None, max_length=255)
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)


class MemberRead(BaseModel):
    """A registered group member as the conversation flows see it."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    display_name: str


class AccountDetailsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_type: str
    account_info: str
