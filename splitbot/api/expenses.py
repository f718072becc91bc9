from fastapi import APIRouter, HTTPException, Query, status

from ..schemas.expense import ExpenseRead
from ..services import get_expense, is_group_member, list_group_expenses
from .dependencies import CurrentWebAppUser, SessionDep

router = APIRouter()


@router.get("", response_model=list[ExpenseRead])
async def list_expenses_endpoint(
    session: SessionDep,
    caller: CurrentWebAppUser,
    group_id: int = Query(..., description="Telegram chat id of the group"),
    limit: int = Query(50, ge=1, le=200),
) -> list[ExpenseRead]:
    if not await is_group_member(session, group_id, caller.user.id):
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Not a member of this group")
    expenses = await list_group_expenses(session, group_id, limit=limit)
    return [ExpenseRead.model_validate(expense) for expense in expenses]


@router.get("/{expense_id}", response_model=ExpenseRead)
async def get_expense_endpoint(
    expense_id: int, session: SessionDep, caller: CurrentWebAppUser
) -> ExpenseRead:
    expense = await get_expense(session, expense_id)
    if not expense or not await is_group_member(session, expense.group_id, caller.user.id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Expense not found")
    return ExpenseRead.model_validate(expense)
