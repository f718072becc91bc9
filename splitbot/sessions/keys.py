from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union


@dataclass(frozen=True, slots=True)
class ExpenseKey:
    """Expense creation is tracked per user, whichever chat they answer from."""

    user_id: int
    namespace: ClassVar[str] = "expense_session"

    def render(self) -> str:
        return f"{self.namespace}:{self.user_id}"


@dataclass(frozen=True, slots=True)
class PaymentKey:
    user_id: int
    namespace: ClassVar[str] = "pay_session"

    def render(self) -> str:
        return f"{self.namespace}:{self.user_id}"


SessionKey = Union[ExpenseKey, PaymentKey]
