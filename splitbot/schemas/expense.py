from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.expense import SplitType


class ExpenseCreate(BaseModel):
    """Fields captured by the expense conversation and written at commit time."""

    group_id: int
    created_by: int
    paid_by: int
    amount: Decimal = Field(gt=0)
    description: Optional[str] = Field(default=None, max_length=512)
    location: Optional[str] = Field(default=None, max_length=255)
    photo_ref: Optional[str] = None
    vendor_slip_ref: Optional[str] = None
    split_type: SplitType


class ExpenseCreated(BaseModel):
    id: int
    group_expense_number: int


class SplitRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    amount_owed: Decimal
    paid: bool
    paid_at: Optional[datetime]


class ExpenseRead(BaseModel):
    """Read model for an expense including its splits."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    group_expense_number: int
    created_by: int
    paid_by: int
    amount: Decimal
    description: Optional[str]
    location: Optional[str]
    photo_ref: Optional[str]
    vendor_slip_ref: Optional[str]
    split_type: SplitType
    created_at: datetime
    splits: list[SplitRead] = Field(default_factory=list)


class UnpaidSplitRead(BaseModel):
    """An outstanding debt: who owes whom, for which expense."""

    model_config = ConfigDict(frozen=True)

    split_id: int
    expense_id: int
    group_id: int
    group_expense_number: int
    debtor_id: int
    payee_id: int
    amount: Decimal
    description: Optional[str] = None
