from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.domain.analytics.cache import AnalyticsCache
from lendops.domain.analytics.models import FundSnapshot, LoanSnapshot
from lendops.domain.analytics.services import snapshots
from lendops.domain.funds.services import ledger
from lendops.domain.loans import service as loan_service
from lendops.domain.loans.enums import LoanStatus
from lendops.shared.cancellation import CancellationToken
from lendops.shared.enums import AnalyticsDomain
from lendops.shared.exceptions import ValidationError

SNAPSHOT_DATE = date(2024, 6, 30)


def _fund_loan(db: Session, bus: EventBus, make_loan, principal: str, collateral: str):
    loan = make_loan(principal=principal, collateral=collateral)
    for status in (
        LoanStatus.submitted,
        LoanStatus.verification,
        LoanStatus.underwriting,
        LoanStatus.approved,
        LoanStatus.closing,
        LoanStatus.funded,
    ):
        loan_service.transition(db, bus, loan.id, status)
    return loan


def _row_tuple(db: Session, model, snapshot_date: date) -> tuple:
    db.expire_all()
    row = db.scalar(select(model).where(model.snapshot_date == snapshot_date))
    return tuple(getattr(row, c.key) for c in model.__table__.columns)


def test_loan_snapshot_counts_and_averages(db_session: Session, event_bus: EventBus, make_loan):
    _fund_loan(db_session, event_bus, make_loan, "300000.00", "400000.00")
    _fund_loan(db_session, event_bus, make_loan, "100000.00", "200000.00")
    make_loan()
    rejected = make_loan()
    loan_service.transition(db_session, event_bus, rejected.id, LoanStatus.rejected)

    row = snapshots.compute_loan_snapshot(db_session, SNAPSHOT_DATE)
    assert row.active_count == 2
    assert row.pipeline_count == 1
    assert row.rejected_count == 1
    assert row.total_principal == Decimal("400000.00")
    assert row.avg_ltv == Decimal("0.625")


def test_recompute_same_date_is_idempotent(db_session: Session, session_factory, event_bus: EventBus, funded_fund: dict):
    first = snapshots.compute_all(session_factory, SNAPSHOT_DATE, max_workers=1)
    assert first.ok
    before = _row_tuple(db_session, FundSnapshot, SNAPSHOT_DATE)

    second = snapshots.compute_all(session_factory, SNAPSHOT_DATE, max_workers=1)
    assert second.ok
    assert _row_tuple(db_session, FundSnapshot, SNAPSHOT_DATE) == before
    assert db_session.scalar(select(func.count()).select_from(FundSnapshot)) == 1

    row = snapshots.get_snapshot(db_session, AnalyticsDomain.funds, SNAPSHOT_DATE)
    assert row.capital_received == Decimal("200000.00")
    assert row.total_commitments == Decimal("1000000.00")
    assert row.available_capital == Decimal("200000.00")


def test_recompute_overwrites_with_current_state(
    db_session: Session, session_factory, event_bus: EventBus, funded_fund: dict, make_loan
):
    snapshots.compute_all(session_factory, SNAPSHOT_DATE, max_workers=1, domains=["funds"])

    loan = make_loan()
    ledger.allocate_to_loan(db_session, event_bus, funded_fund["fund_id"], loan.id, Decimal("50000.00"))
    snapshots.compute_all(session_factory, SNAPSHOT_DATE, max_workers=1, domains=["funds"])

    db_session.expire_all()
    row = snapshots.get_snapshot(db_session, "funds", SNAPSHOT_DATE)
    assert row.capital_deployed == Decimal("50000.00")
    assert row.available_capital == Decimal("150000.00")
    assert db_session.scalar(select(func.count()).select_from(FundSnapshot)) == 1


def test_one_failing_domain_does_not_stop_the_others(
    db_session: Session, session_factory, monkeypatch: pytest.MonkeyPatch
):
    def _broken(session: Session, snapshot_date: date) -> dict:
        raise RuntimeError("payments warehouse offline")

    monkeypatch.setitem(snapshots.SNAPSHOT_COMPUTERS, AnalyticsDomain.payments, _broken)

    result = snapshots.compute_all(session_factory, SNAPSHOT_DATE, max_workers=1)

    assert not result.ok
    assert result.failed == [AnalyticsDomain.payments]
    assert "offline" in result.domains[AnalyticsDomain.payments].error
    for domain in (AnalyticsDomain.loans, AnalyticsDomain.funds, AnalyticsDomain.inspections):
        assert result.domains[domain].status == "ok"
        assert snapshots.get_snapshot(db_session, domain, SNAPSHOT_DATE) is not None
    assert snapshots.get_snapshot(db_session, AnalyticsDomain.payments, SNAPSHOT_DATE) is None


def test_cancelled_run_starts_no_domains(db_session: Session, session_factory):
    token = CancellationToken()
    token.cancel()

    result = snapshots.compute_all(session_factory, SNAPSHOT_DATE, cancel_token=token, max_workers=1)

    assert {r.status for r in result.domains.values()} == {"cancelled"}
    assert db_session.scalar(select(func.count()).select_from(LoanSnapshot)) == 0


def test_run_invalidates_computed_domains(session_factory, analytics_cache: AnalyticsCache):
    analytics_cache.set("analytics:loans", "k", 1)
    analytics_cache.set("analytics:funds", "k", 2)

    snapshots.compute_all(session_factory, SNAPSHOT_DATE, max_workers=1, cache=analytics_cache, domains=["loans"])

    assert analytics_cache.get("analytics:loans", "k") is None
    assert analytics_cache.invalidated_at("analytics:loans") is not None
    assert analytics_cache.invalidated_at("analytics:*") is not None


def test_series_is_ascending_and_projects_fields(db_session: Session, session_factory):
    for day in (date(2024, 6, 3), date(2024, 6, 1), date(2024, 6, 2)):
        snapshots.compute_all(session_factory, day, max_workers=1, domains=["loans"])

    series = snapshots.get_series(db_session, "loans", date(2024, 6, 1), date(2024, 6, 2), fields=["active_count"])
    assert series == [
        {"snapshot_date": date(2024, 6, 1), "active_count": 0},
        {"snapshot_date": date(2024, 6, 2), "active_count": 0},
    ]

    with pytest.raises(ValidationError):
        snapshots.get_series(db_session, "loans", date(2024, 6, 1), date(2024, 6, 2), fields=["nope"])
    with pytest.raises(ValidationError):
        snapshots.get_series(db_session, "loans", date(2024, 6, 2), date(2024, 6, 1))


def test_snapshot_routes(client, db_session: Session):
    r = client.post("/analytics/snapshots/run", json={"snapshot_date": "2024-06-30", "domains": ["loans", "funds"]})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert {d["domain"] for d in body["domains"]} == {"loans", "funds"}

    r = client.get("/analytics/loans/snapshots/2024-06-30")
    assert r.status_code == 200
    assert r.json()["active_count"] == 0

    r = client.get("/analytics/payments/snapshots/2024-06-30")
    assert r.status_code == 404

    r = client.get("/analytics/loans/series", params={"start": "2024-06-01", "end": "2024-06-30"})
    assert r.status_code == 200
    assert len(r.json()["rows"]) == 1
