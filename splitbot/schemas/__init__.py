from .auth import WebAppSession, WebAppUser
from .expense import (
    ExpenseCreate,
    ExpenseCreated,
    ExpenseRead,
    SplitRead,
    UnpaidSplitRead,
)
from .report import DebtorTotal, ReceivablesRead, UserSummary
from .user import AccountDetailsRead, MemberRead, UserCreate

__all__ = [
    "WebAppSession",
    "WebAppUser",
    "ExpenseCreate",
    "ExpenseCreated",
    "ExpenseRead",
    "SplitRead",
    "UnpaidSplitRead",
    "DebtorTotal",
    "ReceivablesRead",
    "UserSummary",
    "AccountDetailsRead",
    "MemberRead",
    "UserCreate",
]
