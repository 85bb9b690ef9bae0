"""
Pro-rata share computation for distributions and capital receipts.

Every share is rounded to the cent with banker's rounding. Whatever the
rounding leaves over (positive or negative) goes to the holder with the
largest commitment; ties go to the earliest commitment, which is the first
one in input order. The returned shares therefore always sum exactly to the
requested total.
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from decimal import ROUND_HALF_EVEN, Decimal
from typing import TypeVar

from lendops.shared.exceptions import ValidationError
from lendops.shared.utils import CENT, to_money

K = TypeVar("K", bound=Hashable)


def compute_pro_rata_shares(weights: Sequence[tuple[K, Decimal]], total: Decimal) -> list[tuple[K, Decimal]]:
    """
    Split ``total`` across ``weights`` in proportion to each weight.

    ``weights`` must be ordered earliest commitment first. Zero weights get a
    zero share; an empty or all-zero input is rejected.
    """
    total = to_money(total)
    if total < 0:
        raise ValidationError("Amount to split must not be negative")

    weights = [(key, Decimal(weight)) for key, weight in weights]
    if any(w < 0 for _, w in weights):
        raise ValidationError("Commitment weights must not be negative")
    weight_sum = sum((w for _, w in weights), Decimal("0"))
    if weight_sum <= 0:
        raise ValidationError("No active commitments to split across")

    shares = [(w / weight_sum * total).quantize(CENT, rounding=ROUND_HALF_EVEN) for _, w in weights]

    remainder = total - sum(shares, Decimal("0"))
    if remainder:
        # max() keeps the first of equal weights, i.e. the earliest commitment.
        largest = max(range(len(weights)), key=lambda i: weights[i][1])
        shares[largest] += remainder

    return [(key, share) for (key, _), share in zip(weights, shares)]
