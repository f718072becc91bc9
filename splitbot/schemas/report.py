from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from .expense import UnpaidSplitRead


class UserSummary(BaseModel):
    """A member's standing in one group."""

    total_owed: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    unpaid_count: int = 0


class DebtorTotal(BaseModel):
    user_id: int
    unpaid_count: int
    total: Decimal


class ReceivablesRead(BaseModel):
    """What the group still owes a payer, and what has already come back."""

    total_pending: Decimal = Decimal("0")
    total_received: Decimal = Decimal("0")
    splits: list[UnpaidSplitRead] = Field(default_factory=list)
