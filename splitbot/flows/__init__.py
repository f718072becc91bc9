from .commit import SplitUnavailable, commit_expense, commit_payment, compute_shares
from .expense import ExpenseFlow
from .payment import PaymentFlow
from .replies import Button, PhotoUpload, Reply, ReplyKind

__all__ = [
    "SplitUnavailable",
    "commit_expense",
    "commit_payment",
    "compute_shares",
    "ExpenseFlow",
    "PaymentFlow",
    "Button",
    "PhotoUpload",
    "Reply",
    "ReplyKind",
]
