from typing import Optional

from fastapi import APIRouter, Query

from ..schemas.expense import UnpaidSplitRead
from ..services import list_unpaid_splits
from .dependencies import CurrentWebAppUser, SessionDep

router = APIRouter()


@router.get("/unpaid", response_model=list[UnpaidSplitRead])
async def list_unpaid_splits_endpoint(
    session: SessionDep,
    caller: CurrentWebAppUser,
    group_id: Optional[int] = Query(None, description="Only debts from this group"),
) -> list[UnpaidSplitRead]:
    return await list_unpaid_splits(session, caller.user.id, group_id=group_id)
