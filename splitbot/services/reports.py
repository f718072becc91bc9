"""Read-only aggregates behind /summary, /owed and the daily reminder."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.expense import Expense, ExpenseSplit
from ..schemas.report import DebtorTotal, ReceivablesRead, UserSummary
from .expenses import to_unpaid_read, unpaid_split_query

CENT = Decimal("0.01")


def _money(value: Optional[object]) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


async def list_groups_with_unpaid_splits(session: AsyncSession) -> list[int]:
    result = await session.execute(
        select(Expense.group_id)
        .join(ExpenseSplit, ExpenseSplit.expense_id == Expense.id)
        .where(ExpenseSplit.paid.is_(False))
        .distinct()
        .order_by(Expense.group_id)
    )
    return list(result.scalars().all())


async def unpaid_totals_by_debtor(session: AsyncSession, group_id: int) -> list[DebtorTotal]:
    result = await session.execute(
        select(ExpenseSplit.user_id, func.count(ExpenseSplit.id), func.sum(ExpenseSplit.amount_owed))
        .join(Expense, Expense.id == ExpenseSplit.expense_id)
        .where(Expense.group_id == group_id, ExpenseSplit.paid.is_(False))
        .group_by(ExpenseSplit.user_id)
        .order_by(ExpenseSplit.user_id)
    )
    return [
        DebtorTotal(user_id=user_id, unpaid_count=count, total=_money(total))
        for user_id, count, total in result.all()
    ]


async def get_user_summary(session: AsyncSession, user_id: int, group_id: int) -> UserSummary:
    """Totals over every split the user owes in the group, settled or not."""
    result = await session.execute(
        select(
            func.sum(case((ExpenseSplit.paid.is_(False), ExpenseSplit.amount_owed), else_=0)),
            func.sum(case((ExpenseSplit.paid.is_(True), ExpenseSplit.amount_owed), else_=0)),
            func.count(case((ExpenseSplit.paid.is_(False), ExpenseSplit.id))),
        )
        .join(Expense, Expense.id == ExpenseSplit.expense_id)
        .where(ExpenseSplit.user_id == user_id, Expense.group_id == group_id)
    )
    owed, paid, unpaid_count = result.one()
    return UserSummary(total_owed=_money(owed), total_paid=_money(paid), unpaid_count=unpaid_count or 0)


async def list_receivables(session: AsyncSession, payee_id: int, group_id: int) -> ReceivablesRead:
    """Splits others owe ``payee_id`` for expenses they fronted in the group."""
    unpaid = await session.execute(
        unpaid_split_query()
        .where(Expense.paid_by == payee_id, Expense.group_id == group_id, ExpenseSplit.user_id != payee_id)
        .order_by(Expense.group_expense_number, ExpenseSplit.id)
    )
    splits = [to_unpaid_read(split, expense) for split, expense in unpaid.all()]

    received = await session.execute(
        select(func.sum(ExpenseSplit.amount_owed))
        .join(Expense, Expense.id == ExpenseSplit.expense_id)
        .where(
            Expense.paid_by == payee_id,
            Expense.group_id == group_id,
            ExpenseSplit.user_id != payee_id,
            ExpenseSplit.paid.is_(True),
        )
    )
    return ReceivablesRead(
        total_pending=_money(sum((split.amount for split in splits), Decimal("0"))),
        total_received=_money(received.scalar_one()),
        splits=splits,
    )
