from __future__ import annotations

import datetime as dt
import uuid
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Any

CENT = Decimal("0.01")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def to_money(value: Any) -> Decimal:
    """Coerce DB/float/str values to a Decimal rounded to the cent (banker's rounding)."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            # str() keeps floats coming back from SQL aggregates from leaking binary noise.
            dec = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    return dec.quantize(CENT, rounding=ROUND_HALF_EVEN)


def to_ratio(value: Any, places: str = "0.0001") -> Decimal:
    if value is None:
        return Decimal(places) * 0
    return Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_EVEN)


def json_safe(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        # Amounts travel as strings on the wire.
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    return str(value)
