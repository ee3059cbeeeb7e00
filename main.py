from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select, SQLModel, create_engine
from typing import List, Optional
from datetime import datetime, timezone
import logging

import config
from models import Participant, Event, Rsvp, Expense, Settlement
from schemas import EventIn, ExpenseIn, ParticipantIn, RsvpIn, RsvpStatus, SettlementIn, SplitType
from compute import (
    ExpenseShares,
    RecordedPayment,
    SplitError,
    UnknownParticipant,
    compute_balances,
    compute_split,
    split_type_of,
    suggest_settlements,
    validate_amount,
)

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO)

app = FastAPI(title="Event Ledger API")

def create_db_and_tables():
    SQLModel.metadata.create_all(engine)

@app.on_event("startup")
def on_startup():
    create_db_and_tables()

def get_session():
    with Session(engine) as session:
        yield session

@app.exception_handler(SplitError)
def split_error_handler(request: Request, exc: SplitError):
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    body = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, UnknownParticipant):
        body["participant_ids"] = exc.participant_ids
    return JSONResponse(status_code=400, content=body)

# ========== Helpers ==========
def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def get_event_or_404(session: Session, event_id: int) -> Event:
    event = session.get(Event, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Event {event_id} not found.")
    return event

def event_participants(session: Session, event_id: int, acting_participant_id: Optional[int] = None) -> List[Participant]:
    """Confirmed attendees in RSVP order; the acting participant alone if nobody confirmed."""
    rows = session.exec(
        select(Participant)
        .join(Rsvp, Rsvp.participant_id == Participant.id)
        .where(Rsvp.event_id == event_id, Rsvp.status == RsvpStatus.going)
        .order_by(Rsvp.id)
    ).all()
    if not rows and acting_participant_id is not None:
        acting = session.get(Participant, acting_participant_id)
        if acting is not None:
            rows = [acting]
    return list(rows)

def serialize_expense(e: Expense) -> dict:
    return {
        "id": e.id,
        "event_id": e.event_id,
        "payer_id": e.payer_id,
        "description": e.description,
        "total_amount": str(e.total_amount),
        "split_type": SplitType(e.split_type).value,
        "split_details": e.split_details,
        "category": e.category,
        "receipt_url": e.receipt_url,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }

def serialize_settlement(s: Settlement) -> dict:
    return {
        "id": s.id,
        "event_id": s.event_id,
        "from_participant_id": s.from_participant_id,
        "to_participant_id": s.to_participant_id,
        "amount": str(s.amount),
        "note": s.note,
        "settled_at": s.settled_at.isoformat() if s.settled_at else None,
    }

def ledger_for_event(session: Session, event_id: int, acting_participant_id: Optional[int]):
    participants = event_participants(session, event_id, acting_participant_id)
    expenses = session.exec(select(Expense).where(Expense.event_id == event_id).order_by(Expense.id)).all()
    shares = [ExpenseShares.from_split_details(e.payer_id, e.split_details) for e in expenses]
    payments = None
    if config.NET_RECORDED_SETTLEMENTS:
        recorded = session.exec(select(Settlement).where(Settlement.event_id == event_id).order_by(Settlement.id)).all()
        payments = [RecordedPayment(s.from_participant_id, s.to_participant_id, s.amount) for s in recorded]
    balances = compute_balances(participants, shares, payments)
    suggestions = suggest_settlements(balances, by_amount=config.SORT_SETTLEMENTS_BY_AMOUNT)
    return balances, suggestions

def format_balances(balances) -> list:
    return [
        {
            "participant_id": b.participant_id,
            "name": b.name,
            "net_balance": str(b.net_balance),
            "owed_by": {str(k): str(v) for k, v in b.owed_by.items()},
            "owes_to": {str(k): str(v) for k, v in b.owes_to.items()},
        }
        for b in balances
    ]

def format_suggestions(suggestions) -> list:
    return [
        {
            "from": s.from_participant_id,
            "from_name": s.from_name,
            "to": s.to_participant_id,
            "to_name": s.to_name,
            "amount": str(s.amount),
        }
        for s in suggestions
    ]

# ========== Participant endpoints ==========
@app.post("/participants", response_model=Participant)
def create_participant(payload: ParticipantIn, session: Session = Depends(get_session)):
    p = Participant(name=payload.name, email=payload.email)
    session.add(p)
    session.commit()
    session.refresh(p)
    return p

@app.get("/participants", response_model=List[Participant])
def list_participants(session: Session = Depends(get_session)):
    return session.exec(select(Participant)).all()

# ========== Event endpoints ==========
@app.post("/events", response_model=Event)
def create_event(payload: EventIn, session: Session = Depends(get_session)):
    if session.get(Participant, payload.created_by) is None:
        raise HTTPException(status_code=400, detail=f"Participant {payload.created_by} does not exist.")
    event = Event(**payload.model_dump())
    event.starts_at = as_utc(payload.starts_at)
    session.add(event)
    session.commit()
    session.refresh(event)
    logger.info("Created event %s (%s)", event.id, event.title)
    return event

@app.get("/events", response_model=List[Event])
def list_events(session: Session = Depends(get_session)):
    return session.exec(select(Event)).all()

@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: int, session: Session = Depends(get_session)):
    return get_event_or_404(session, event_id)

@app.post("/events/{event_id}/rsvps", response_model=Rsvp)
def rsvp(event_id: int, payload: RsvpIn, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    if session.get(Participant, payload.participant_id) is None:
        raise HTTPException(status_code=400, detail=f"Participant {payload.participant_id} does not exist.")
    existing = session.exec(
        select(Rsvp).where(Rsvp.event_id == event_id, Rsvp.participant_id == payload.participant_id)
    ).first()
    if existing:
        existing.status = payload.status
        row = existing
    else:
        row = Rsvp(event_id=event_id, participant_id=payload.participant_id, status=payload.status)
    session.add(row)
    session.commit()
    session.refresh(row)
    return row

@app.get("/events/{event_id}/participants", response_model=List[Participant])
def list_event_participants(event_id: int, participant_id: Optional[int] = None,
                            session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    return event_participants(session, event_id, participant_id)

# ========== Expense endpoints ==========
@app.post("/events/{event_id}/expenses")
def create_expense(event_id: int, payload: ExpenseIn, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    participants = event_participants(session, event_id, payload.payer_id)
    member_ids = [p.id for p in participants]
    if payload.payer_id not in member_ids:
        raise UnknownParticipant([payload.payer_id])
    shares = compute_split(payload.total_amount, payload.split, member_ids)
    expense = Expense(
        event_id = event_id,
        payer_id = payload.payer_id,
        description = payload.description,
        total_amount = validate_amount(payload.total_amount),
        split_type = split_type_of(payload.split),
        split_details = {str(pid): share.to_json() for pid, share in shares.items()},
        category = payload.category,
        receipt_url = payload.receipt_url,
    )
    session.add(expense)
    session.commit()
    session.refresh(expense)
    logger.info("Created expense %s for event %s: %s paid %s", expense.id, event_id, expense.payer_id, expense.total_amount)
    return serialize_expense(expense)

@app.get("/events/{event_id}/expenses")
def list_expenses(event_id: int, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    expenses = session.exec(select(Expense).where(Expense.event_id == event_id).order_by(Expense.id)).all()
    return [serialize_expense(e) for e in expenses]

# ========== Balance & settlement endpoints ==========
@app.get("/events/{event_id}/balances")
def event_balances(event_id: int, participant_id: Optional[int] = None, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    balances, suggestions = ledger_for_event(session, event_id, participant_id)
    return {
        "balances": format_balances(balances),
        "settlements": format_suggestions(suggestions),
    }

@app.get("/events/{event_id}/settlements/suggested")
def suggested_settlements(event_id: int, participant_id: Optional[int] = None, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    _, suggestions = ledger_for_event(session, event_id, participant_id)
    return format_suggestions(suggestions)

@app.post("/events/{event_id}/settlements")
def record_settlement(event_id: int, payload: SettlementIn, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    if payload.from_participant_id == payload.to_participant_id:
        raise HTTPException(status_code=400, detail="A participant can't settle with themselves.")
    amount = validate_amount(payload.amount)
    member_ids = {p.id for p in event_participants(session, event_id, payload.from_participant_id)}
    unknown = {payload.from_participant_id, payload.to_participant_id} - member_ids
    if unknown:
        raise UnknownParticipant(unknown)
    settlement = Settlement(
        event_id = event_id,
        from_participant_id = payload.from_participant_id,
        to_participant_id = payload.to_participant_id,
        amount = amount,
        note = payload.note,
    )
    if payload.settled_at is not None:
        settlement.settled_at = as_utc(payload.settled_at)
    session.add(settlement)
    session.commit()
    session.refresh(settlement)
    logger.info("Recorded settlement %s for event %s: %s paid %s %s", settlement.id, event_id,
                settlement.from_participant_id, settlement.to_participant_id, settlement.amount)
    return serialize_settlement(settlement)

@app.get("/events/{event_id}/settlements")
def list_settlements(event_id: int, session: Session = Depends(get_session)):
    get_event_or_404(session, event_id)
    rows = session.exec(select(Settlement).where(Settlement.event_id == event_id).order_by(Settlement.id)).all()
    return [serialize_settlement(s) for s in rows]
