from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow


class SplitType(str, enum.Enum):
    EQUAL = "equal"
    CUSTOM = "custom"


class Expense(Base):
    """A shared bill fronted by one member of a group."""

    __tablename__ = "expenses"
    __table_args__ = (UniqueConstraint("group_id", "group_expense_number", name="uq_expenses_group_number"),)

    group_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    group_expense_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    paid_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    photo_ref: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    vendor_slip_ref: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    split_type: Mapped[SplitType] = mapped_column(
        Enum(SplitType, name="splittype", values_callable=lambda enum_cls: [e.value for e in enum_cls]),
        nullable=False,
    )

    splits: Mapped[list["ExpenseSplit"]] = relationship(
        back_populates="expense", cascade="all, delete-orphan", order_by="ExpenseSplit.id"
    )


class ExpenseSplit(Base):
    """One participant's owed share of an expense."""

    __tablename__ = "expense_splits"

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    amount_owed: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    expense: Mapped[Expense] = relationship(back_populates="splits")
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="split", cascade="all, delete-orphan"
    )


class Payment(Base):
    """Settlement of a split, optionally backed by a transfer slip."""

    __tablename__ = "payments"

    expense_split_id: Mapped[int] = mapped_column(
        ForeignKey("expense_splits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    paid_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    paid_to: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    proof_ref: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    split: Mapped[ExpenseSplit] = relationship(back_populates="payments")
