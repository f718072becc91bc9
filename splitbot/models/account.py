from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class AccountDetail(Base):
    """Where a user wants to receive repayments (bank account, wallet handle...)."""

    __tablename__ = "account_details"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.telegram_id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_type: Mapped[str] = mapped_column(String(32), nullable=False, default="bank")
    account_info: Mapped[str] = mapped_column(String(512), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user: Mapped["User"] = relationship(back_populates="account_details")


from .user import User  # noqa: E402
