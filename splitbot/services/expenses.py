"""Expense, split and payment persistence.

Write helpers only flush; the caller owns the transaction so that an expense
and its splits, or a split and its payment, land together or not at all.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.expense import Expense, ExpenseSplit, Payment
from ..schemas.expense import ExpenseCreate, UnpaidSplitRead

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


async def create_expense(session: AsyncSession, payload: ExpenseCreate) -> Expense:
    """Insert an expense with the next per-group sequence number."""
    result = await session.execute(
        select(func.coalesce(func.max(Expense.group_expense_number), 0)).where(
            Expense.group_id == payload.group_id
        )
    )
    next_number = int(result.scalar_one()) + 1
    expense = Expense(
        group_id=payload.group_id,
        group_expense_number=next_number,
        created_by=payload.created_by,
        paid_by=payload.paid_by,
        amount=_money(payload.amount),
        description=payload.description,
        location=payload.location,
        photo_ref=payload.photo_ref,
        vendor_slip_ref=payload.vendor_slip_ref,
        split_type=payload.split_type,
    )
    session.add(expense)
    await session.flush()
    return expense


async def create_split(
    session: AsyncSession,
    expense_id: int,
    user_id: int,
    amount: Decimal,
) -> ExpenseSplit:
    split = ExpenseSplit(expense_id=expense_id, user_id=user_id, amount_owed=_money(amount))
    session.add(split)
    await session.flush()
    return split


async def get_expense(session: AsyncSession, expense_id: int) -> Optional[Expense]:
    result = await session.execute(
        select(Expense).options(selectinload(Expense.splits)).where(Expense.id == expense_id)
    )
    return result.scalars().first()


async def list_group_expenses(
    session: AsyncSession,
    group_id: int,
    *,
    limit: int = 50,
) -> Sequence[Expense]:
    result = await session.execute(
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(Expense.group_id == group_id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .limit(limit)
    )
    return result.scalars().unique().all()


def unpaid_split_query():
    return (
        select(ExpenseSplit, Expense)
        .join(Expense, Expense.id == ExpenseSplit.expense_id)
        .where(ExpenseSplit.paid.is_(False))
    )


def to_unpaid_read(split: ExpenseSplit, expense: Expense) -> UnpaidSplitRead:
    return UnpaidSplitRead(
        split_id=split.id,
        expense_id=expense.id,
        group_id=expense.group_id,
        group_expense_number=expense.group_expense_number,
        debtor_id=split.user_id,
        payee_id=expense.paid_by,
        amount=Decimal(str(split.amount_owed)),
        description=expense.description,
    )


async def get_unpaid_split(session: AsyncSession, split_id: int) -> Optional[UnpaidSplitRead]:
    result = await session.execute(unpaid_split_query().where(ExpenseSplit.id == split_id))
    row = result.first()
    if row is None:
        return None
    return to_unpaid_read(*row)


async def list_unpaid_splits(
    session: AsyncSession,
    user_id: int,
    *,
    group_id: Optional[int] = None,
) -> list[UnpaidSplitRead]:
    stmt = unpaid_split_query().where(ExpenseSplit.user_id == user_id)
    if group_id is not None:
        stmt = stmt.where(Expense.group_id == group_id)
    result = await session.execute(stmt.order_by(Expense.created_at, ExpenseSplit.id))
    return [to_unpaid_read(split, expense) for split, expense in result.all()]


async def mark_split_paid(session: AsyncSession, split_id: int) -> bool:
    """Flip a split to paid. Returns False when it was already paid (or is gone)."""
    result = await session.execute(
        update(ExpenseSplit)
        .where(ExpenseSplit.id == split_id, ExpenseSplit.paid.is_(False))
        .values(paid=True, paid_at=datetime.now(timezone.utc))
    )
    return result.rowcount == 1


async def record_payment(
    session: AsyncSession,
    *,
    split_id: int,
    payer_id: int,
    payee_id: int,
    amount: Decimal,
    proof_ref: Optional[str] = None,
) -> Payment:
    payment = Payment(
        expense_split_id=split_id,
        paid_by=payer_id,
        paid_to=payee_id,
        amount=_money(amount),
        proof_ref=proof_ref,
    )
    session.add(payment)
    await session.flush()
    return payment
