from typing import Optional, Dict, Any
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
from decimal import Decimal

from schemas import RsvpStatus, SplitType

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============== Participants ==============
class ParticipantBase(SQLModel):
    name: str
    email: Optional[str] = None

class Participant(ParticipantBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)

# ============== Events ==============
class EventBase(SQLModel):
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    starts_at: Optional[datetime] = None

class Event(EventBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_by: int = Field(foreign_key="participant.id")
    created_at: datetime = Field(default_factory=utcnow)

class Rsvp(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("event_id", "participant_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    participant_id: int = Field(foreign_key="participant.id")
    status: RsvpStatus = RsvpStatus.going
    created_at: datetime = Field(default_factory=utcnow)

# ============== Expenses ==============
class ExpenseBase(SQLModel):
    description: str
    total_amount: Decimal = Field(max_digits=10, decimal_places=2)
    split_type: SplitType = SplitType.equal
    category: Optional[str] = None
    receipt_url: Optional[str] = None

class Expense(ExpenseBase, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    payer_id: int = Field(foreign_key="participant.id")  # who actually paid
    # participant id -> {"amount": "10.00", "percentage": "33.33"}; resolved before storage
    split_details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)

# ============== Settlements (recorded payments) ==============
class Settlement(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    from_participant_id: int = Field(foreign_key="participant.id")
    to_participant_id: int = Field(foreign_key="participant.id")
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    note: Optional[str] = None
    settled_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
