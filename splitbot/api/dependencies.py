from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..schemas.auth import WebAppSession
from ..services.auth import WebAppAuthenticationError, verify_init_data

SessionDep = Annotated[AsyncSession, Depends(get_db)]


def _unauthorised(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_webapp_session(
    init_data: Annotated[str | None, Header(alias="X-Telegram-Init-Data")] = None,
) -> WebAppSession:
    if not init_data:
        raise _unauthorised("Missing Telegram init data")
    try:
        return verify_init_data(init_data)
    except WebAppAuthenticationError as exc:
        raise _unauthorised(str(exc)) from exc


CurrentWebAppUser = Annotated[WebAppSession, Depends(get_webapp_session)]
