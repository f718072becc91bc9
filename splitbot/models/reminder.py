from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ReminderSetting(Base):
    """Per-group switch for the daily debt reminder, plus when it last went out."""

    __tablename__ = "reminder_settings"

    group_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
