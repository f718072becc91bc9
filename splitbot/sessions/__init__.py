from .keys import ExpenseKey, PaymentKey, SessionKey
from .models import (
    AmountStep,
    ConfirmStep,
    CustomSplitsStep,
    DescriptionStep,
    LocationStep,
    PaidByStep,
    PhotoStep,
    ProofStep,
    SplitTypeStep,
    UsersStep,
    VendorSlipStep,
    advance,
)
from .repository import (
    ExpenseSessions,
    PaymentSessions,
    SessionConflict,
    SessionError,
    SessionExpired,
    SessionRepository,
    expense_sessions,
    payment_sessions,
)
from .store import InMemorySessionStore, RedisSessionStore, SessionStore

__all__ = [
    "ExpenseKey",
    "PaymentKey",
    "SessionKey",
    "AmountStep",
    "DescriptionStep",
    "LocationStep",
    "PhotoStep",
    "VendorSlipStep",
    "UsersStep",
    "PaidByStep",
    "SplitTypeStep",
    "CustomSplitsStep",
    "ConfirmStep",
    "ProofStep",
    "advance",
    "ExpenseSessions",
    "PaymentSessions",
    "SessionConflict",
    "SessionError",
    "SessionExpired",
    "SessionRepository",
    "expense_sessions",
    "payment_sessions",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionStore",
]
