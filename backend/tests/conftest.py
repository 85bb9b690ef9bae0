from __future__ import annotations

import os
import sys
import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Make `backend/` importable regardless of pytest import mode.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from lendops.core.db.base import Base
from lendops.core.db.session import get_db, import_model_modules
from lendops.core.events.bus import EventBus
from lendops.core.events.registry import get_event_bus, register_default_handlers
from lendops.domain.analytics.cache import AnalyticsCache, get_analytics_cache
from lendops.domain.analytics.routes import get_snapshot_session_factory
from lendops.domain.funds.enums import FundType
from lendops.domain.funds.services import ledger
from lendops.domain.loans import service as loan_service
from lendops.main import create_app
from lendops.shared.enums import DispatchMode

# Ensure model modules are imported so Base.metadata is complete.
import_model_modules()

ORG_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def session_factory(db_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, class_=Session)


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def analytics_cache() -> AnalyticsCache:
    return AnalyticsCache()


@pytest.fixture()
def bare_bus(session_factory) -> EventBus:
    """Inline bus with no subscribers; tests register their own handlers."""
    return EventBus(
        session_factory,
        mode=DispatchMode.inline,
        handler_max_attempts=3,
        handler_backoff_seconds=0,
        conflict_max_attempts=3,
        conflict_backoff_seconds=0,
    )


@pytest.fixture()
def event_bus(bare_bus: EventBus, analytics_cache: AnalyticsCache) -> EventBus:
    return register_default_handlers(bare_bus, analytics_cache)


@pytest.fixture()
def client(db_session: Session, session_factory, event_bus: EventBus, analytics_cache: AnalyticsCache) -> TestClient:
    app = create_app()

    def _override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_event_bus] = lambda: event_bus
    app.dependency_overrides[get_analytics_cache] = lambda: analytics_cache
    app.dependency_overrides[get_snapshot_session_factory] = lambda: session_factory
    return TestClient(app)


@pytest.fixture()
def make_loan(db_session: Session, event_bus: EventBus):
    def _make(principal: str = "250000.00", collateral: str | None = "400000.00", **kwargs):
        return loan_service.create_loan(
            db_session,
            event_bus,
            organization_id=kwargs.pop("organization_id", ORG_ID),
            principal=Decimal(principal),
            collateral_value=Decimal(collateral) if collateral is not None else None,
            actor_id=kwargs.pop("actor_id", "underwriter-1"),
            **kwargs,
        )

    return _make


@pytest.fixture()
def funded_fund(db_session: Session, event_bus: EventBus) -> dict:
    """Fund with commitments of 700k and 300k and one received 200k call."""
    fund = ledger.create_fund(
        db_session,
        event_bus,
        organization_id=ORG_ID,
        name="Bridge Lending Fund I",
        fund_type=FundType.private,
        total_capacity=Decimal("5000000.00"),
        actor_id="fund-admin",
    )
    big = ledger.add_commitment(
        db_session, event_bus, fund.id, uuid.uuid4(), Decimal("700000.00"), commitment_date=date(2024, 1, 2)
    )
    small = ledger.add_commitment(
        db_session, event_bus, fund.id, uuid.uuid4(), Decimal("300000.00"), commitment_date=date(2024, 1, 3)
    )
    call = ledger.call_capital(db_session, event_bus, fund.id, 1, Decimal("200000.00"), date(2024, 2, 1))
    ledger.receive_capital(db_session, event_bus, call.id, received_date=date(2024, 2, 1))
    return {"fund_id": fund.id, "big": big.id, "small": small.id, "call_id": call.id}
