from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.domain.funds.enums import CapitalCallStatus, CommitmentStatus, FundStatus, FundType
from lendops.domain.funds.models import FundCommitment
from lendops.domain.funds.services import ledger
from lendops.domain.funds.services.metrics import get_fund_position
from lendops.domain.loans import service as loan_service
from lendops.domain.loans.enums import LoanStatus
from lendops.shared.exceptions import InsufficientCapital, NotFound, ValidationError


def _commitment(db: Session, commitment_id) -> FundCommitment:
    db.expire_all()
    return db.get(FundCommitment, commitment_id)


def test_received_call_is_spread_pro_rata_over_commitments(db_session: Session, funded_fund: dict):
    assert _commitment(db_session, funded_fund["big"]).called_amount == Decimal("140000.00")
    assert _commitment(db_session, funded_fund["small"]).called_amount == Decimal("60000.00")

    position = get_fund_position(db_session, funded_fund["fund_id"])
    assert position.total_committed == Decimal("1000000.00")
    assert position.total_received == Decimal("200000.00")
    assert position.available_capital == Decimal("200000.00")
    assert position.uncalled_capital == Decimal("800000.00")


def test_allocation_cannot_exceed_received_capital(
    db_session: Session, event_bus: EventBus, funded_fund: dict, make_loan
):
    loan = make_loan()
    fund_id = funded_fund["fund_id"]

    with pytest.raises(InsufficientCapital) as exc_info:
        ledger.allocate_to_loan(db_session, event_bus, fund_id, loan.id, Decimal("250000.00"))
    assert exc_info.value.available == Decimal("200000.00")
    assert ledger.list_allocations(db_session, fund_id) == []

    ledger.allocate_to_loan(db_session, event_bus, fund_id, loan.id, Decimal("150000.00"))
    db_session.expire_all()
    assert get_fund_position(db_session, fund_id).available_capital == Decimal("50000.00")

    with pytest.raises(InsufficientCapital):
        ledger.allocate_to_loan(db_session, event_bus, fund_id, loan.id, Decimal("50000.01"))


def test_returned_capital_becomes_available_again(
    db_session: Session, event_bus: EventBus, funded_fund: dict, make_loan
):
    loan = make_loan()
    fund_id = funded_fund["fund_id"]
    allocation = ledger.allocate_to_loan(db_session, event_bus, fund_id, loan.id, Decimal("200000.00"))

    ledger.return_from_loan(db_session, event_bus, allocation.id, Decimal("80000.00"), date(2024, 6, 1))
    db_session.expire_all()
    position = get_fund_position(db_session, fund_id)
    assert position.total_returned == Decimal("80000.00")
    assert position.outstanding_deployed == Decimal("120000.00")
    assert position.available_capital == Decimal("80000.00")

    with pytest.raises(ValidationError):
        ledger.return_from_loan(db_session, event_bus, allocation.id, Decimal("120000.01"))


def test_allocation_to_rejected_or_missing_loan_is_refused(
    db_session: Session, event_bus: EventBus, funded_fund: dict, make_loan
):
    loan = make_loan()
    loan_service.transition(db_session, event_bus, loan.id, LoanStatus.rejected)

    with pytest.raises(ValidationError):
        ledger.allocate_to_loan(db_session, event_bus, funded_fund["fund_id"], loan.id, Decimal("1000.00"))
    with pytest.raises(NotFound):
        ledger.allocate_to_loan(db_session, event_bus, funded_fund["fund_id"], uuid.uuid4(), Decimal("1000.00"))


def test_commitment_with_received_call_cannot_be_cancelled(
    db_session: Session, event_bus: EventBus, funded_fund: dict
):
    with pytest.raises(ValidationError):
        ledger.cancel_commitment(db_session, event_bus, funded_fund["big"])
    assert _commitment(db_session, funded_fund["big"]).status == CommitmentStatus.active


def test_uncalled_commitment_can_be_cancelled_once(db_session: Session, event_bus: EventBus, funded_fund: dict):
    late = ledger.add_commitment(
        db_session, event_bus, funded_fund["fund_id"], uuid.uuid4(), Decimal("50000.00"), commitment_date=date(2024, 3, 1)
    )

    cancelled = ledger.cancel_commitment(db_session, event_bus, late.id, reason="lender withdrew")
    assert cancelled.status == CommitmentStatus.cancelled
    assert cancelled.cancelled_at is not None

    with pytest.raises(ValidationError):
        ledger.cancel_commitment(db_session, event_bus, late.id)

    db_session.expire_all()
    assert get_fund_position(db_session, funded_fund["fund_id"]).total_committed == Decimal("1000000.00")


def test_call_numbers_must_increase(db_session: Session, event_bus: EventBus, funded_fund: dict):
    fund_id = funded_fund["fund_id"]

    with pytest.raises(ValidationError):
        ledger.call_capital(db_session, event_bus, fund_id, 1, Decimal("10000.00"), date(2024, 3, 1))

    call = ledger.call_capital(db_session, event_bus, fund_id, 3, Decimal("10000.00"), date(2024, 3, 1))
    assert call.status == CapitalCallStatus.pending
    assert [c.call_number for c in ledger.list_calls(db_session, fund_id)] == [1, 3]


def test_call_cannot_exceed_uncalled_commitments(db_session: Session, event_bus: EventBus, funded_fund: dict):
    with pytest.raises(ValidationError):
        ledger.call_capital(db_session, event_bus, funded_fund["fund_id"], 2, Decimal("800000.01"), date(2024, 3, 1))


def test_call_cannot_be_received_twice(db_session: Session, event_bus: EventBus, funded_fund: dict):
    with pytest.raises(ValidationError):
        ledger.receive_capital(db_session, event_bus, funded_fund["call_id"])


def test_distribution_lines_sum_to_total(db_session: Session, event_bus: EventBus, funded_fund: dict):
    result = ledger.distribute(db_session, event_bus, funded_fund["fund_id"], Decimal("1000.00"), date(2024, 12, 31))

    by_commitment = {line.commitment_id: line.amount for line in result.lines}
    assert by_commitment[funded_fund["big"]] == Decimal("700.00")
    assert by_commitment[funded_fund["small"]] == Decimal("300.00")
    assert sum(by_commitment.values()) == Decimal("1000.00")

    history = EventBus.get_event_history(db_session, funded_fund["fund_id"], "Fund")
    assert [e.event_type for e in history].count("Fund.DistributionMade") == 1


def test_fund_events_share_one_gapless_sequence(db_session: Session, funded_fund: dict):
    history = EventBus.get_event_history(db_session, funded_fund["fund_id"], "Fund")
    assert [e.event_type for e in history] == [
        "Fund.Created",
        "Fund.CommitmentAdded",
        "Fund.CommitmentAdded",
        "Fund.CapitalCalled",
        "Fund.CapitalReceived",
    ]
    assert [e.sequence_number for e in history] == [1, 2, 3, 4, 5]


def test_closed_fund_rejects_new_commitments(db_session: Session, event_bus: EventBus, funded_fund: dict):
    fund = ledger.close_fund(db_session, event_bus, funded_fund["fund_id"], actor_id="fund-admin")
    assert fund.status == FundStatus.closed

    with pytest.raises(ValidationError):
        ledger.add_commitment(db_session, event_bus, fund.id, uuid.uuid4(), Decimal("1.00"))


def test_every_ledger_write_bumps_fund_version(db_session: Session, event_bus: EventBus, funded_fund: dict):
    fund = ledger.get_fund(db_session, funded_fund["fund_id"])
    before = fund.version

    ledger.add_commitment(db_session, event_bus, fund.id, uuid.uuid4(), Decimal("1000.00"))
    db_session.expire_all()
    assert ledger.get_fund(db_session, fund.id).version == before + 1


def test_insufficient_capital_maps_to_422(client, db_session: Session, funded_fund: dict, make_loan):
    loan = make_loan()
    fund_id = funded_fund["fund_id"]

    r = client.post(f"/funds/{fund_id}/allocations", json={"loan_id": str(loan.id), "amount": "250000.00"})
    assert r.status_code == 422
    assert r.json()["kind"] == "InsufficientCapital"

    r = client.post(f"/funds/{fund_id}/allocations", json={"loan_id": str(loan.id), "amount": "150000.00"})
    assert r.status_code == 201

    r = client.get(f"/funds/{fund_id}/position")
    assert r.status_code == 200
    assert Decimal(r.json()["available_capital"]) == Decimal("50000.00")


def test_commitment_rows_are_queryable_by_fund(db_session: Session, funded_fund: dict):
    rows = db_session.scalars(select(FundCommitment).where(FundCommitment.fund_id == funded_fund["fund_id"])).all()
    assert {r.id for r in rows} == {funded_fund["big"], funded_fund["small"]}


def _empty_fund(db: Session, bus: EventBus):
    return ledger.create_fund(
        db,
        bus,
        organization_id=uuid.uuid4(),
        name="Construction Credit Fund II",
        fund_type=FundType.private,
        total_capacity=Decimal("1000000.00"),
    )


def test_lender_with_two_commitments_gets_one_distribution_line(db_session: Session, event_bus: EventBus):
    fund = _empty_fund(db_session, event_bus)
    lender_a, lender_b = uuid.uuid4(), uuid.uuid4()
    a1 = ledger.add_commitment(db_session, event_bus, fund.id, lender_a, Decimal("300.00"), commitment_date=date(2024, 1, 1))
    ledger.add_commitment(db_session, event_bus, fund.id, lender_b, Decimal("500.00"), commitment_date=date(2024, 1, 2))
    a2 = ledger.add_commitment(db_session, event_bus, fund.id, lender_a, Decimal("300.00"), commitment_date=date(2024, 1, 3))

    result = ledger.distribute(db_session, event_bus, fund.id, Decimal("100.01"), date(2024, 6, 30))

    assert len(result.lines) == 2
    assert {line.lender_id: line.amount for line in result.lines} == {
        lender_a: Decimal("54.55"),
        lender_b: Decimal("45.46"),
    }
    assert [line.commitment_id for line in result.lines if line.lender_id == lender_a] == [a1.id]

    spread = [_commitment(db_session, a1.id).distributed_amount, _commitment(db_session, a2.id).distributed_amount]
    assert spread == [Decimal("27.27"), Decimal("27.28")]


def test_called_amount_never_exceeds_commitment(db_session: Session, event_bus: EventBus):
    fund = _empty_fund(db_session, event_bus)
    early = ledger.add_commitment(db_session, event_bus, fund.id, uuid.uuid4(), Decimal("100.00"))
    first = ledger.call_capital(db_session, event_bus, fund.id, 1, Decimal("100.00"), date(2024, 2, 1))
    ledger.receive_capital(db_session, event_bus, first.id)

    late = ledger.add_commitment(db_session, event_bus, fund.id, uuid.uuid4(), Decimal("100.00"))
    second = ledger.call_capital(db_session, event_bus, fund.id, 2, Decimal("100.00"), date(2024, 3, 1))
    ledger.receive_capital(db_session, event_bus, second.id)

    for commitment_id in (early.id, late.id):
        commitment = _commitment(db_session, commitment_id)
        assert commitment.called_amount == Decimal("100.00")
        assert commitment.called_amount <= commitment.committed_amount
    assert get_fund_position(db_session, fund.id).uncalled_capital == Decimal("0.00")


def test_receipt_larger_than_remaining_commitments_is_refused(db_session: Session, event_bus: EventBus):
    fund = _empty_fund(db_session, event_bus)
    ledger.add_commitment(db_session, event_bus, fund.id, uuid.uuid4(), Decimal("100.00"))
    leaving = ledger.add_commitment(db_session, event_bus, fund.id, uuid.uuid4(), Decimal("50.00"))
    call = ledger.call_capital(db_session, event_bus, fund.id, 1, Decimal("150.00"), date(2024, 2, 1))
    ledger.cancel_commitment(db_session, event_bus, leaving.id, reason="lender withdrew")

    with pytest.raises(ValidationError):
        ledger.receive_capital(db_session, event_bus, call.id)
    db_session.expire_all()
    assert ledger.list_calls(db_session, fund.id)[0].status == CapitalCallStatus.pending
