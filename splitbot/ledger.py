"""Data-access contract the conversation flows rely on, plus its SQL implementation."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncContextManager, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .schemas.expense import ExpenseCreate, ExpenseCreated, UnpaidSplitRead
from .schemas.user import AccountDetailsRead, MemberRead
from .services import expenses as expense_service
from .services import users as user_service


class LedgerWriter(Protocol):
    """Writes performed inside one all-or-nothing ledger transaction."""

    async def create_expense(self, payload: ExpenseCreate) -> ExpenseCreated: ...

    async def create_split(self, expense_id: int, participant_id: int, amount: Decimal) -> None: ...

    async def get_unpaid_split(self, split_id: int) -> Optional[UnpaidSplitRead]: ...

    async def mark_split_paid(self, split_id: int) -> bool: ...

    async def record_payment(
        self,
        split_id: int,
        payer_id: int,
        payee_id: int,
        amount: Decimal,
        proof_ref: Optional[str] = None,
    ) -> None: ...


class Ledger(Protocol):
    async def get_group_members(self, group_id: int) -> list[MemberRead]: ...

    async def get_member(self, user_id: int) -> Optional[MemberRead]: ...

    async def get_unpaid_split(self, split_id: int) -> Optional[UnpaidSplitRead]: ...

    async def list_unpaid_splits(
        self, user_id: int, *, group_id: Optional[int] = None
    ) -> list[UnpaidSplitRead]: ...

    async def get_payee_account_details(self, payee_id: int) -> Optional[AccountDetailsRead]: ...

    def transaction(self) -> AsyncContextManager[LedgerWriter]: ...


class _SqlLedgerWriter:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_expense(self, payload: ExpenseCreate) -> ExpenseCreated:
        expense = await expense_service.create_expense(self.session, payload)
        return ExpenseCreated(id=expense.id, group_expense_number=expense.group_expense_number)

    async def create_split(self, expense_id: int, participant_id: int, amount: Decimal) -> None:
        await expense_service.create_split(self.session, expense_id, participant_id, amount)

    async def get_unpaid_split(self, split_id: int) -> Optional[UnpaidSplitRead]:
        return await expense_service.get_unpaid_split(self.session, split_id)

    async def mark_split_paid(self, split_id: int) -> bool:
        return await expense_service.mark_split_paid(self.session, split_id)

    async def record_payment(
        self,
        split_id: int,
        payer_id: int,
        payee_id: int,
        amount: Decimal,
        proof_ref: Optional[str] = None,
    ) -> None:
        await expense_service.record_payment(
            self.session,
            split_id=split_id,
            payer_id=payer_id,
            payee_id=payee_id,
            amount=amount,
            proof_ref=proof_ref,
        )


class SqlLedger:
    """`Ledger` backed by the async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_group_members(self, group_id: int) -> list[MemberRead]:
        async with self.session_factory() as session:
            users = await user_service.list_group_members(session, group_id)
        return [MemberRead(user_id=user.telegram_id, display_name=user.display_name()) for user in users]

    async def get_member(self, user_id: int) -> Optional[MemberRead]:
        async with self.session_factory() as session:
            user = await user_service.get_user_by_telegram_id(session, user_id)
        if user is None:
            return None
        return MemberRead(user_id=user.telegram_id, display_name=user.display_name())

    async def get_unpaid_split(self, split_id: int) -> Optional[UnpaidSplitRead]:
        async with self.session_factory() as session:
            return await expense_service.get_unpaid_split(session, split_id)

    async def list_unpaid_splits(
        self, user_id: int, *, group_id: Optional[int] = None
    ) -> list[UnpaidSplitRead]:
        async with self.session_factory() as session:
            return await expense_service.list_unpaid_splits(session, user_id, group_id=group_id)

    async def get_payee_account_details(self, payee_id: int) -> Optional[AccountDetailsRead]:
        async with self.session_factory() as session:
            detail = await user_service.get_active_account_details(session, payee_id)
        if detail is None:
            return None
        return AccountDetailsRead.model_validate(detail)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SqlLedgerWriter]:
        async with self.session_factory() as session:
            async with session.begin():
                yield _SqlLedgerWriter(session)
