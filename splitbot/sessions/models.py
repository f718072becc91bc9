"""Session records, one model per conversation step.

Each step carries exactly the fields that are known once the conversation has
reached it, so e.g. a custom split map cannot exist while the amount is still
being asked for. Later steps extend earlier ones.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class SessionRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = Field(default=0, ge=0)


# Expense creation

class AmountStep(SessionRecord):
    step: Literal["amount"] = "amount"
    group_id: int


class DescriptionStep(AmountStep):
    step: Literal["description"] = "description"
    amount: Decimal = Field(gt=0)


class LocationStep(DescriptionStep):
    step: Literal["location"] = "location"
    description: Optional[str] = None


class PhotoStep(LocationStep):
    step: Literal["photo"] = "photo"
    location: Optional[str] = None


class VendorSlipStep(PhotoStep):
    step: Literal["vendor_slip"] = "vendor_slip"
    photo_ref: Optional[str] = None


class UsersStep(VendorSlipStep):
    step: Literal["users"] = "users"
    vendor_slip_ref: Optional[str] = None
    selected: set[int] = Field(default_factory=set)


class PaidByStep(UsersStep):
    step: Literal["paid_by"] = "paid_by"


class SplitTypeStep(PaidByStep):
    step: Literal["split_type"] = "split_type"
    paid_by: int
    # set while the ledger write runs; a claimed session refuses a second commit
    committing: bool = False


class CustomSplitsStep(SplitTypeStep):
    step: Literal["custom_splits"] = "custom_splits"
    custom_splits: dict[int, Decimal] = Field(default_factory=dict)


ExpenseSession = Annotated[
    Union[
        AmountStep,
        DescriptionStep,
        LocationStep,
        PhotoStep,
        VendorSlipStep,
        UsersStep,
        PaidByStep,
        SplitTypeStep,
        CustomSplitsStep,
    ],
    Field(discriminator="step"),
]


# Payment confirmation

class ConfirmStep(SessionRecord):
    step: Literal["confirm"] = "confirm"
    split_id: int


class ProofStep(ConfirmStep):
    step: Literal["photo"] = "photo"


PaymentSession = Annotated[Union[ConfirmStep, ProofStep], Field(discriminator="step")]


EXPENSE_SESSION_ADAPTER: TypeAdapter[ExpenseSession] = TypeAdapter(ExpenseSession)
PAYMENT_SESSION_ADAPTER: TypeAdapter[PaymentSession] = TypeAdapter(PaymentSession)

S = TypeVar("S", bound=SessionRecord)


def advance(session: SessionRecord, target: type[S], **changes: object) -> S:
    """Move ``session`` to the ``target`` step, carrying every known field forward."""
    data = session.model_dump(exclude={"step"})
    data.update(changes)
    return target.model_validate(data)
