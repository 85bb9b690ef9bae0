from __future__ import annotations

import uuid
from decimal import Decimal
from functools import lru_cache

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from lendops import main
from lendops.core.db.base import Base
from lendops.core.events.bus import EventBus
from lendops.core.events.models import DomainEventRecord, EventDeadLetter, EventProcessingLog
from lendops.core.events.registry import register_default_handlers
from lendops.core.events.types import DomainEvent, EventHandlerRegistration
from lendops.domain.alerts.models import Alert
from lendops.domain.analytics.cache import AnalyticsCache
from lendops.domain.loans import service as loan_service
from lendops.domain.loans.enums import LoanStatus
from lendops.shared.cancellation import CancellationToken
from lendops.shared.enums import DispatchMode
from lendops.shared.exceptions import Conflict

EVENT_TYPE = "Loan.StatusChanged"


def _publish(db: Session, bus: EventBus, aggregate_id: str, count: int = 1, event_type: str = EVENT_TYPE) -> list[DomainEvent]:
    def _op(session: Session) -> list[DomainEvent]:
        return [
            bus.publish(session, event_type, aggregate_id, "Loan", {"loanId": aggregate_id, "step": i})
            for i in range(count)
        ]

    return bus.commit_and_dispatch(db, _op)


def _register(bus: EventBus, name: str, fn, priority: int = 100, event_type: str = EVENT_TYPE) -> None:
    bus.subscribe(EventHandlerRegistration(handler_name=name, event_type=event_type, handler=fn, priority=priority))


def _record(db: Session, event_id) -> DomainEventRecord:
    db.expire_all()
    return db.get(DomainEventRecord, event_id)


def test_sequence_numbers_are_gapless_per_aggregate(db_session: Session, bare_bus: EventBus):
    a, b = str(uuid.uuid4()), str(uuid.uuid4())
    _publish(db_session, bare_bus, a, count=3)
    _publish(db_session, bare_bus, b, count=1)
    _publish(db_session, bare_bus, a, count=2)

    assert [e.sequence_number for e in EventBus.get_event_history(db_session, a)] == [1, 2, 3, 4, 5]
    assert [e.sequence_number for e in EventBus.get_event_history(db_session, b)] == [1]


def test_handlers_run_highest_priority_first(db_session: Session, bare_bus: EventBus):
    calls: list[str] = []
    _register(bare_bus, "low", lambda s, e: calls.append("low"), priority=10)
    _register(bare_bus, "high", lambda s, e: calls.append("high"), priority=500)
    _register(bare_bus, "mid", lambda s, e: calls.append("mid"), priority=100)

    _publish(db_session, bare_bus, str(uuid.uuid4()))
    assert calls == ["high", "mid", "low"]


def test_subscribe_is_idempotent_by_name(db_session: Session, bare_bus: EventBus):
    calls: list[str] = []
    for _ in range(3):
        _register(bare_bus, "counter", lambda s, e: calls.append(e.event_type))

    _publish(db_session, bare_bus, str(uuid.uuid4()))
    assert calls == [EVENT_TYPE]
    assert len(bare_bus.handlers_for(EVENT_TYPE)) == 1


def test_failing_handler_is_isolated_logged_and_parked(db_session: Session, bare_bus: EventBus):
    calls: list[str] = []
    attempts = {"n": 0}

    def _boom(session: Session, event: DomainEvent) -> None:
        attempts["n"] += 1
        raise RuntimeError("downstream unavailable")

    _register(bare_bus, "boom", _boom, priority=200)
    _register(bare_bus, "after", lambda s, e: calls.append("after"), priority=100)

    (event,) = _publish(db_session, bare_bus, str(uuid.uuid4()))

    assert attempts["n"] == 3
    assert calls == ["after"]

    record = _record(db_session, event.id)
    assert record is not None
    assert record.processing_status == "failed"
    assert "downstream unavailable" in record.processing_error

    letters = db_session.scalars(select(EventDeadLetter).where(EventDeadLetter.event_id == event.id)).all()
    assert [(dl.handler_name, dl.attempts) for dl in letters] == [("boom", 3)]

    logs = {
        log.handler_name: log.status
        for log in db_session.scalars(select(EventProcessingLog).where(EventProcessingLog.event_id == event.id))
    }
    assert logs == {"boom": "failure", "after": "success"}


def test_transient_failure_is_retried_to_success(db_session: Session, bare_bus: EventBus):
    attempts = {"n": 0}

    def _flaky(session: Session, event: DomainEvent) -> None:
        attempts["n"] += 1
        if attempts["n"] < 2:
            raise RuntimeError("blip")

    _register(bare_bus, "flaky", _flaky)
    (event,) = _publish(db_session, bare_bus, str(uuid.uuid4()))

    assert attempts["n"] == 2
    assert _record(db_session, event.id).processing_status == "processed"
    assert db_session.scalar(select(func.count()).select_from(EventDeadLetter)) == 0


def test_reprocess_dead_letters_resolves_and_marks_processed(db_session: Session, bare_bus: EventBus):
    state = {"broken": True}

    def _handler(session: Session, event: DomainEvent) -> None:
        if state["broken"]:
            raise RuntimeError("still broken")

    _register(bare_bus, "recovering", _handler)
    (event,) = _publish(db_session, bare_bus, str(uuid.uuid4()))
    assert _record(db_session, event.id).processing_status == "failed"

    assert bare_bus.reprocess_dead_letters() == 0

    state["broken"] = False
    assert bare_bus.reprocess_dead_letters() == 1

    db_session.expire_all()
    letter = db_session.scalar(select(EventDeadLetter).where(EventDeadLetter.event_id == event.id))
    assert letter.resolved_at is not None
    assert letter.attempts == 7
    assert _record(db_session, event.id).processing_status == "processed"


def test_failed_operation_publishes_nothing(db_session: Session, bare_bus: EventBus):
    calls: list[str] = []
    _register(bare_bus, "spy", lambda s, e: calls.append(e.event_type))
    aggregate_id = str(uuid.uuid4())

    def _op(session: Session) -> None:
        bare_bus.publish(session, EVENT_TYPE, aggregate_id, "Loan", {"loanId": aggregate_id})
        raise ValueError("business rule violated")

    with pytest.raises(ValueError):
        bare_bus.commit_and_dispatch(db_session, _op)

    assert calls == []
    assert EventBus.get_event_history(db_session, aggregate_id) == []
    assert EventBus.take_pending(db_session) == []


def test_dispatch_pending_delivers_outbox_rows(db_session: Session, bare_bus: EventBus):
    calls: list[int] = []
    aggregate_id = str(uuid.uuid4())

    # Committed without dispatch, as after a crash between commit and delivery.
    bare_bus.publish(db_session, EVENT_TYPE, aggregate_id, "Loan", {"loanId": aggregate_id})
    EventBus.take_pending(db_session)
    db_session.commit()

    _register(bare_bus, "spy", lambda s, e: calls.append(e.sequence_number))
    assert bare_bus.dispatch_pending() == 1
    assert calls == [1]
    assert bare_bus.dispatch_pending() == 0


def test_replay_runs_history_in_order_without_parking(db_session: Session, bare_bus: EventBus):
    aggregate_id = str(uuid.uuid4())
    _publish(db_session, bare_bus, aggregate_id, count=3)

    seen: list[int] = []
    _register(bare_bus, "projector", lambda s, e: seen.append(e.sequence_number))

    def _broken(session: Session, event: DomainEvent) -> None:
        raise RuntimeError("nope")

    _register(bare_bus, "broken", _broken, priority=1)

    result = bare_bus.replay(aggregate_id, "Loan")
    assert seen == [1, 2, 3]
    assert result.events_total == 3
    assert result.events_replayed == 3
    assert len(result.failures) == 3
    assert not result.cancelled
    assert db_session.scalar(select(func.count()).select_from(EventDeadLetter)) == 0


def test_replay_stops_when_cancelled(db_session: Session, bare_bus: EventBus):
    aggregate_id = str(uuid.uuid4())
    _publish(db_session, bare_bus, aggregate_id, count=4)

    token = CancellationToken()
    seen: list[int] = []

    def _projector(session: Session, event: DomainEvent) -> None:
        seen.append(event.sequence_number)
        if len(seen) == 2:
            token.cancel()

    _register(bare_bus, "projector", _projector)
    result = bare_bus.replay(aggregate_id, cancel_token=token)

    assert seen == [1, 2]
    assert result.cancelled
    assert result.events_replayed == 2


def test_event_round_trips_through_wire_format(db_session: Session, bare_bus: EventBus):
    (event,) = _publish(db_session, bare_bus, str(uuid.uuid4()))
    wire = event.to_wire()

    assert wire["eventType"] == EVENT_TYPE
    assert wire["aggregateType"] == "Loan"
    assert DomainEvent.from_wire(wire) == event


def test_recent_events_newest_first_and_filtered(db_session: Session, bare_bus: EventBus):
    aggregate_id = str(uuid.uuid4())
    _publish(db_session, bare_bus, aggregate_id, count=2)
    _publish(db_session, bare_bus, aggregate_id, count=1, event_type="Loan.Funded")

    recent = EventBus.recent_events(db_session, limit=10)
    assert recent[0].event_type == "Loan.Funded"
    assert [e.event_type for e in EventBus.recent_events(db_session, event_types=["Loan.Funded"])] == ["Loan.Funded"]


def test_persistent_conflict_surfaces_after_bounded_retries(db_session: Session, bare_bus: EventBus):
    calls = {"n": 0}

    def _op(session: Session) -> None:
        calls["n"] += 1
        raise StaleDataError("UPDATE statement on table 'funds' expected to update 1 row(s); 0 were matched.")

    with pytest.raises(Conflict):
        bare_bus.commit_and_dispatch(db_session, _op)
    assert calls["n"] == 3


def test_conflict_then_success_commits_once(db_session: Session, bare_bus: EventBus):
    calls: list[str] = []
    _register(bare_bus, "spy", lambda s, e: calls.append(e.aggregate_id))
    aggregate_id = str(uuid.uuid4())
    attempts = {"n": 0}

    def _op(session: Session) -> None:
        attempts["n"] += 1
        bare_bus.publish(session, EVENT_TYPE, aggregate_id, "Loan", {"loanId": aggregate_id})
        if attempts["n"] == 1:
            raise StaleDataError("concurrent update")

    bare_bus.commit_and_dispatch(db_session, _op)

    assert calls == [aggregate_id]
    assert [e.sequence_number for e in EventBus.get_event_history(db_session, aggregate_id)] == [1]


@pytest.fixture()
def file_session_factory(tmp_path):
    # Worker threads need their own connections; the shared in-memory pool is single-connection.
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'events.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    engine.dispose()


def test_background_mode_processes_events_off_the_request_thread(file_session_factory, analytics_cache: AnalyticsCache):
    bus = register_default_handlers(
        EventBus(file_session_factory, mode=DispatchMode.background, max_workers=1, handler_backoff_seconds=0),
        analytics_cache,
    )
    db = file_session_factory()
    try:
        loan = loan_service.create_loan(db, bus, organization_id=uuid.uuid4(), principal=Decimal("90000.00"))
        moved = loan_service.transition(db, bus, loan.id, LoanStatus.submitted)
        assert moved.status == LoanStatus.submitted

        bus.wait_idle(timeout=10)

        db.expire_all()
        history = EventBus.get_event_history(db, loan.id)
        assert [e.event_type for e in history] == ["Loan.Created", "Loan.StatusChanged"]
        for event in history:
            assert db.get(DomainEventRecord, event.id).processing_status == "processed"
        (alert,) = db.scalars(select(Alert)).all()
        assert alert.code == "LOAN_STATUS_CHANGED"
        assert alert.entity_id == str(loan.id)
    finally:
        db.close()
        bus.shutdown(wait=True)


def test_app_shutdown_stops_the_dispatch_executor(monkeypatch, file_session_factory):
    bus = EventBus(file_session_factory, mode=DispatchMode.background, max_workers=1)
    handled: list[str] = []
    _register(bus, "spy", lambda s, e: handled.append(e.aggregate_id))
    built = lru_cache(maxsize=1)(lambda: bus)
    built()
    monkeypatch.setattr(main, "get_event_bus", built)

    db = file_session_factory()
    try:
        aggregate_id = str(uuid.uuid4())
        _publish(db, bus, aggregate_id)
        with TestClient(main.create_app()) as client:
            assert client.get("/health").status_code == 200
    finally:
        db.close()

    assert handled == [aggregate_id]
    assert bus._executor is None
