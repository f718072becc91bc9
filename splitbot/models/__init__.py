from .account import AccountDetail
from .base import Base
from .expense import Expense, ExpenseSplit, Payment, SplitType
from .reminder import ReminderSetting
from .user import GroupMember, User

__all__ = [
    "Base",
    "AccountDetail",
    "Expense",
    "ExpenseSplit",
    "Payment",
    "SplitType",
    "ReminderSetting",
    "GroupMember",
    "User",
]
