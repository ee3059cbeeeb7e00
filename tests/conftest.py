from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from compute import ExpenseShares
from main import app, get_session
from models import Participant


@pytest.fixture
def people():
    """Alice, Bob and Carol."""
    return [
        Participant(id=1, name="Alice"),
        Participant(id=2, name="Bob"),
        Participant(id=3, name="Carol"),
    ]


@pytest.fixture
def dinner():
    """Alice pays $30, split equally among all three."""
    return ExpenseShares(payer_id=1, shares={1: Decimal("10.00"), 2: Decimal("10.00"), 3: Decimal("10.00")})


@pytest.fixture
def taxi():
    """Bob pays $15, split equally among all three."""
    return ExpenseShares(payer_id=2, shares={1: Decimal("5.00"), 2: Decimal("5.00"), 3: Decimal("5.00")})


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def event_with_guests(client):
    """An event where Alice, Bob and Carol all RSVP'd going. Returns (event_id, [ids])."""
    ids = [client.post("/participants", json={"name": n}).json()["id"] for n in ("Alice", "Bob", "Carol")]
    event_id = client.post("/events", json={"title": "Cabin weekend", "created_by": ids[0]}).json()["id"]
    for pid in ids:
        client.post(f"/events/{event_id}/rsvps", json={"participant_id": pid, "status": "going"})
    return event_id, ids
