from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class WebAppUser(BaseModel):
    """The `user` object embedded in Telegram mini-app init data."""

    model_config = ConfigDict(extra="allow")

    id: int = Field(description="Telegram user identifier")
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    username: str | None = Field(default=None, max_length=255)

    def full_name(self) -> str | None:
        """Best-effort derivation of a human readable name."""

        names = [name for name in (self.first_name, self.last_name) if name]
        if names:
            return " ".join(names)
        return self.username


class WebAppSession(BaseModel):
    """Verified mini-app caller."""

    user: WebAppUser
    auth_date: int = Field(description="Unix timestamp when the init data was generated")

    def auth_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.auth_date, tz=timezone.utc)
