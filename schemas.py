"""
Request and response models for the event ledger API.

Split rules are a tagged union on `type`, so a payload that doesn't match
its split type is rejected by pydantic before any split is computed.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class SplitType(str, Enum):
    equal = "equal"
    percentage = "percentage"
    fixed_amount = "fixed_amount"


class RsvpStatus(str, Enum):
    going = "going"
    maybe = "maybe"
    not_going = "not_going"


# ============== Split rules ==============
class EqualSplit(BaseModel):
    type: Literal["equal"] = "equal"
    participant_ids: Optional[List[int]] = Field(
        None, description="Who shares the expense; everyone in the event when omitted"
    )


class PercentageSplit(BaseModel):
    type: Literal["percentage"]
    percentages: Dict[int, Decimal] = Field(..., description="Participant id -> percent of the total")


class FixedAmountSplit(BaseModel):
    type: Literal["fixed_amount"]
    amounts: Dict[int, Decimal] = Field(..., description="Participant id -> amount owed")


SplitRule = Annotated[Union[EqualSplit, PercentageSplit, FixedAmountSplit], Field(discriminator="type")]


# ============== Inputs ==============
class ParticipantIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None


class EventIn(BaseModel):
    title: str = Field(..., min_length=1)
    created_by: int
    description: Optional[str] = None
    location: Optional[str] = None
    starts_at: Optional[datetime] = None


class RsvpIn(BaseModel):
    participant_id: int
    status: RsvpStatus = RsvpStatus.going


class ExpenseIn(BaseModel):
    payer_id: int
    description: str = Field(..., min_length=1)
    total_amount: Decimal
    split: SplitRule = Field(default_factory=EqualSplit)
    category: Optional[str] = None
    receipt_url: Optional[str] = None


class SettlementIn(BaseModel):
    from_participant_id: int
    to_participant_id: int
    amount: Decimal
    note: Optional[str] = None
    settled_at: Optional[datetime] = None
