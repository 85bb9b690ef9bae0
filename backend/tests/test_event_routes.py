from __future__ import annotations

from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.core.events.types import DomainEvent, EventHandlerRegistration


def _create_loan(client) -> str:
    r = client.post(
        "/loans",
        json={"organization_id": "00000000-0000-0000-0000-0000000000aa", "principal": "90000.00"},
        headers={"X-Request-ID": "req-loan-1", "X-Actor-ID": "analyst-9"},
    )
    assert r.status_code == 201
    return r.json()["id"]


def test_history_carries_request_context(client):
    loan_id = _create_loan(client)
    client.post(f"/loans/{loan_id}/transition", json={"target_status": "submitted"})

    r = client.get(f"/events/{loan_id}", params={"aggregate_type": "Loan"})
    assert r.status_code == 200
    events = r.json()
    assert [e["event_type"] for e in events] == ["Loan.Created", "Loan.StatusChanged"]
    assert [e["sequence_number"] for e in events] == [1, 2]
    assert events[0]["metadata"]["correlationId"] == "req-loan-1"
    assert events[0]["metadata"]["userId"] == "analyst-9"


def test_replay_route_reports_counts(client):
    loan_id = _create_loan(client)

    r = client.post(f"/events/{loan_id}/replay", json={"aggregate_type": "Loan"})
    assert r.status_code == 200
    assert r.json()["events_total"] == 1
    assert r.json()["events_replayed"] == 1
    assert r.json()["failures"] == []


def test_dead_letters_listed_and_reprocessed(client, db_session: Session, event_bus: EventBus):
    state = {"broken": True}

    def _handler(session: Session, event: DomainEvent) -> None:
        if state["broken"]:
            raise RuntimeError("search index down")

    event_bus.subscribe(
        EventHandlerRegistration(handler_name="search-indexer", event_type="Loan.Created", handler=_handler)
    )
    _create_loan(client)

    r = client.get("/events/dead-letters")
    assert r.status_code == 200
    (letter,) = r.json()
    assert letter["handler_name"] == "search-indexer"
    assert "search index down" in letter["error"]

    state["broken"] = False
    r = client.post("/events/dead-letters/reprocess")
    assert r.json() == {"count": 1}
    assert client.get("/events/dead-letters").json() == []


def test_recent_events_filter(client):
    _create_loan(client)
    r = client.get("/events/recent", params={"event_type": "Loan.Created"})
    assert r.status_code == 200
    assert [e["event_type"] for e in r.json()] == ["Loan.Created"]
