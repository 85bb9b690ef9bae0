from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest

from lendops.domain.funds.services.metrics import FundPosition, compute_fund_metrics, compute_irr, safe_ratio
from lendops.domain.funds.services.pro_rata import compute_pro_rata_shares
from lendops.shared.exceptions import ValidationError


def _shares(weights: list[str], total: str) -> list[Decimal]:
    return [share for _, share in compute_pro_rata_shares([(i, Decimal(w)) for i, w in enumerate(weights)], Decimal(total))]


def test_even_split_has_no_remainder():
    assert _shares(["600", "400"], "1000") == [Decimal("600.00"), Decimal("400.00")]


def test_remainder_goes_to_largest_commitment():
    shares = _shares(["333", "333", "334"], "100")
    assert shares == [Decimal("33.30"), Decimal("33.30"), Decimal("33.40")]
    assert sum(shares) == Decimal("100.00")


def test_thirds_sum_exactly_and_tie_goes_to_earliest():
    shares = _shares(["1", "1", "1"], "100")
    assert shares == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
    assert sum(shares) == Decimal("100.00")


def test_zero_weight_gets_nothing():
    assert _shares(["0", "5"], "10.00") == [Decimal("0.00"), Decimal("10.00")]


def test_invalid_weights_are_rejected():
    with pytest.raises(ValidationError):
        compute_pro_rata_shares([], Decimal("10"))
    with pytest.raises(ValidationError):
        compute_pro_rata_shares([("a", Decimal("0"))], Decimal("10"))
    with pytest.raises(ValidationError):
        compute_pro_rata_shares([("a", Decimal("-1")), ("b", Decimal("2"))], Decimal("10"))


def test_safe_ratio_handles_zero_denominator():
    assert safe_ratio(Decimal("5"), Decimal("0")) == Decimal("0")
    assert safe_ratio(Decimal("1"), Decimal("3")) == Decimal("0.3333")


def test_fund_metrics_from_position():
    position = FundPosition(
        fund_id=uuid.uuid4(),
        total_capacity=Decimal("2000000.00"),
        total_committed=Decimal("1000000.00"),
        total_called=Decimal("400000.00"),
        total_received=Decimal("400000.00"),
        total_allocated=Decimal("300000.00"),
        total_returned=Decimal("150000.00"),
        total_distributed=Decimal("0.00"),
    )
    metrics = compute_fund_metrics(position)

    assert metrics.deployment_rate == Decimal("0.3000")
    assert metrics.return_rate == Decimal("0.5000")
    assert metrics.capacity_utilization == Decimal("0.5000")
    assert position.available_capital == Decimal("250000.00")
    assert position.outstanding_deployed == Decimal("150000.00")


def test_irr_of_one_year_ten_percent():
    irr = compute_irr([(date(2023, 1, 1), Decimal("-1000")), (date(2024, 1, 1), Decimal("1100"))])
    assert irr == pytest.approx(0.10, abs=1e-4)


def test_irr_needs_two_flows_with_a_sign_change():
    assert compute_irr([(date(2023, 1, 1), Decimal("-1000"))]) is None
    assert compute_irr([(date(2023, 1, 1), Decimal("100")), (date(2024, 1, 1), Decimal("100"))]) is None


def test_moic_counts_distributions_and_capital_still_deployed():
    position = FundPosition(
        fund_id=uuid.uuid4(),
        total_capacity=Decimal("2000000.00"),
        total_committed=Decimal("1000000.00"),
        total_called=Decimal("400000.00"),
        total_received=Decimal("400000.00"),
        total_allocated=Decimal("300000.00"),
        total_returned=Decimal("150000.00"),
        total_distributed=Decimal("200000.00"),
    )
    metrics = compute_fund_metrics(position)

    assert metrics.return_rate == Decimal("0.5000")
    assert metrics.moic == Decimal("1.1667")


def test_moic_is_undefined_before_any_deployment():
    position = FundPosition(
        fund_id=uuid.uuid4(),
        total_capacity=Decimal("1000.00"),
        total_committed=Decimal("1000.00"),
        total_called=Decimal("0.00"),
        total_received=Decimal("0.00"),
        total_allocated=Decimal("0.00"),
        total_returned=Decimal("0.00"),
        total_distributed=Decimal("0.00"),
    )
    assert compute_fund_metrics(position).moic is None
