"""
Daily point-in-time KPI rows, one table per analytics domain.

Rows are derived from live state at computation time, not folded from the
event log: a snapshot for date D reflects the data as it stood when the job
ran. Recomputing a date overwrites its row; when nothing changed no UPDATE is
issued and the row stays byte-identical.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Literal

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from lendops.core.config import settings
from lendops.domain.analytics.cache import AnalyticsCache
from lendops.domain.analytics.invalidation import ALL_ANALYTICS_TAG, tag_for
from lendops.domain.analytics.models import FundSnapshot, InspectionSnapshot, LoanSnapshot, PaymentSnapshot
from lendops.domain.funds.enums import CapitalCallStatus, CommitmentStatus, FundStatus
from lendops.domain.funds.models import CapitalCall, CapitalReturn, Fund, FundCommitment, FundDistribution, FundLoanAllocation
from lendops.domain.funds.services.metrics import safe_ratio
from lendops.domain.inspections.enums import InspectionStatus
from lendops.domain.inspections.models import Inspection
from lendops.domain.loans.enums import LoanStatus
from lendops.domain.loans.models import Loan
from lendops.domain.payments.enums import PaymentStatus
from lendops.domain.payments.models import Payment
from lendops.shared.cancellation import CancellationToken
from lendops.shared.enums import AnalyticsDomain
from lendops.shared.exceptions import ValidationError
from lendops.shared.utils import to_money, to_ratio

logger = structlog.get_logger(__name__)

SNAPSHOT_MODELS = {
    AnalyticsDomain.loans: LoanSnapshot,
    AnalyticsDomain.funds: FundSnapshot,
    AnalyticsDomain.payments: PaymentSnapshot,
    AnalyticsDomain.inspections: InspectionSnapshot,
}

PIPELINE_STATUSES = (
    LoanStatus.draft,
    LoanStatus.submitted,
    LoanStatus.verification,
    LoanStatus.underwriting,
    LoanStatus.approved,
    LoanStatus.closing,
)


@dataclass(frozen=True)
class DomainSnapshotResult:
    domain: AnalyticsDomain
    status: Literal["ok", "failed", "cancelled"]
    snapshot_id: uuid.UUID | None = None
    error: str | None = None


@dataclass
class SnapshotRunResult:
    snapshot_date: date
    domains: dict[AnalyticsDomain, DomainSnapshotResult] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return all(r.status == "ok" for r in self.domains.values())

    @property
    def failed(self) -> list[AnalyticsDomain]:
        return [d for d, r in self.domains.items() if r.status == "failed"]


def _mean(values: Sequence[Decimal], places: str) -> Decimal | None:
    if not values:
        return None
    return to_ratio(sum(values, Decimal("0")) / len(values), places)


def _sum(session: Session, column, *where) -> Decimal:
    return to_money(session.scalar(select(func.coalesce(func.sum(column), 0)).where(*where)))


def _count(session: Session, model, *where) -> int:
    return int(session.scalar(select(func.count()).select_from(model).where(*where)) or 0)


# --- Per-domain values


def loan_snapshot_values(session: Session, snapshot_date: date) -> dict[str, Any]:
    funded = (Loan.status == LoanStatus.funded,)
    ltvs = [
        Decimal(principal) / Decimal(collateral)
        for principal, collateral in session.execute(
            select(Loan.principal, Loan.collateral_value).where(*funded, Loan.collateral_value > 0)
        )
    ]
    return {
        "active_count": _count(session, Loan, *funded),
        "pipeline_count": _count(session, Loan, Loan.status.in_(PIPELINE_STATUSES)),
        "delinquent_count": _count(session, Loan, *funded, Loan.delinquent_since.is_not(None)),
        "rejected_count": _count(session, Loan, Loan.status == LoanStatus.rejected),
        "total_principal": _sum(session, Loan.principal, *funded),
        "avg_ltv": _mean(ltvs, "0.001"),
    }


def fund_snapshot_values(session: Session, snapshot_date: date) -> dict[str, Any]:
    committed = _sum(
        session,
        FundCommitment.committed_amount,
        FundCommitment.status == CommitmentStatus.active,
    )
    received = _sum(session, CapitalCall.received_amount, CapitalCall.status == CapitalCallStatus.funded)
    allocated = _sum(session, FundLoanAllocation.allocated_amount)
    returned = _sum(session, CapitalReturn.amount)
    return {
        "active_fund_count": _count(session, Fund, Fund.status == FundStatus.active),
        "total_commitments": committed,
        "capital_received": received,
        "capital_deployed": allocated - returned,
        "capital_returned": returned,
        "capital_distributed": _sum(session, FundDistribution.total_amount),
        "available_capital": received - allocated + returned,
        "deployment_rate": safe_ratio(allocated, committed),
    }


def payment_snapshot_values(session: Session, snapshot_date: date) -> dict[str, Any]:
    completed = (Payment.status == PaymentStatus.completed,)
    collection_days = [
        Decimal((received - due).days)
        for due, received in session.execute(
            select(Payment.due_date, Payment.received_date).where(
                *completed, Payment.received_date <= snapshot_date
            )
        )
    ]
    return {
        "amount_received": _sum(session, Payment.amount, *completed, Payment.received_date == snapshot_date),
        "amount_scheduled": _sum(session, Payment.amount, Payment.due_date == snapshot_date),
        "late_count": _count(
            session, Payment, Payment.status == PaymentStatus.pending, Payment.due_date < snapshot_date
        ),
        "failed_count": _count(session, Payment, Payment.status == PaymentStatus.failed),
        "avg_collection_days": _mean(collection_days, "0.01"),
    }


def inspection_snapshot_values(session: Session, snapshot_date: date) -> dict[str, Any]:
    completion_days = [
        Decimal((completed - scheduled).days)
        for scheduled, completed in session.execute(
            select(Inspection.scheduled_date, Inspection.completed_date).where(
                Inspection.status == InspectionStatus.completed,
                Inspection.completed_date <= snapshot_date,
            )
        )
    ]
    return {
        "scheduled_count": _count(session, Inspection, Inspection.status == InspectionStatus.scheduled),
        "completed_count": _count(
            session,
            Inspection,
            Inspection.status == InspectionStatus.completed,
            Inspection.completed_date == snapshot_date,
        ),
        "overdue_count": _count(session, Inspection, Inspection.status == InspectionStatus.overdue),
        "avg_completion_days": _mean(completion_days, "0.01"),
    }


SNAPSHOT_COMPUTERS: dict[AnalyticsDomain, Callable[[Session, date], dict[str, Any]]] = {
    AnalyticsDomain.loans: loan_snapshot_values,
    AnalyticsDomain.funds: fund_snapshot_values,
    AnalyticsDomain.payments: payment_snapshot_values,
    AnalyticsDomain.inspections: inspection_snapshot_values,
}


# --- Upsert


def _upsert(session: Session, model, snapshot_date: date, values: dict[str, Any]):
    row = session.scalar(select(model).where(model.snapshot_date == snapshot_date))
    if row is None:
        row = model(id=uuid.uuid4(), snapshot_date=snapshot_date, **values)
        session.add(row)
        return row
    for key, value in values.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
    return row


def compute_snapshot(session: Session, domain: AnalyticsDomain | str, snapshot_date: date | None = None):
    """Compute and upsert one domain's row for ``snapshot_date``; commits on success."""
    domain = AnalyticsDomain(domain)
    snapshot_date = snapshot_date or date.today()
    model = SNAPSHOT_MODELS[domain]

    # Two runs racing on a new date collide on the unique date; the loser re-reads and updates.
    for attempt in Retrying(retry=retry_if_exception_type(IntegrityError), stop=stop_after_attempt(2), reraise=True):
        with attempt:
            try:
                values = SNAPSHOT_COMPUTERS[domain](session, snapshot_date)
                row = _upsert(session, model, snapshot_date, values)
                session.commit()
            except Exception:
                session.rollback()
                raise
    return row


def compute_loan_snapshot(session: Session, snapshot_date: date | None = None) -> LoanSnapshot:
    return compute_snapshot(session, AnalyticsDomain.loans, snapshot_date)


def compute_fund_snapshot(session: Session, snapshot_date: date | None = None) -> FundSnapshot:
    return compute_snapshot(session, AnalyticsDomain.funds, snapshot_date)


def compute_payment_snapshot(session: Session, snapshot_date: date | None = None) -> PaymentSnapshot:
    return compute_snapshot(session, AnalyticsDomain.payments, snapshot_date)


def compute_inspection_snapshot(session: Session, snapshot_date: date | None = None) -> InspectionSnapshot:
    return compute_snapshot(session, AnalyticsDomain.inspections, snapshot_date)


# --- Batch


def _run_domain(
    session_factory: Callable[[], Session],
    domain: AnalyticsDomain,
    snapshot_date: date,
    cancel_token: CancellationToken | None,
) -> DomainSnapshotResult:
    if cancel_token is not None and cancel_token.cancelled:
        logger.info("snapshot_domain_cancelled", domain=domain.value, snapshot_date=snapshot_date.isoformat())
        return DomainSnapshotResult(domain=domain, status="cancelled")
    try:
        with session_factory() as session:
            row = compute_snapshot(session, domain, snapshot_date)
            row_id = row.id
    except Exception as exc:  # noqa: BLE001 - one domain failing must not stop the others
        logger.error(
            "snapshot_domain_failed",
            domain=domain.value,
            snapshot_date=snapshot_date.isoformat(),
            error=str(exc),
            exc_info=True,
        )
        return DomainSnapshotResult(domain=domain, status="failed", error=str(exc))
    logger.info("snapshot_domain_computed", domain=domain.value, snapshot_date=snapshot_date.isoformat())
    return DomainSnapshotResult(domain=domain, status="ok", snapshot_id=row_id)


def compute_all(
    session_factory: Callable[[], Session],
    snapshot_date: date | None = None,
    *,
    cancel_token: CancellationToken | None = None,
    max_workers: int | None = None,
    cache: AnalyticsCache | None = None,
    domains: Iterable[AnalyticsDomain | str] | None = None,
) -> SnapshotRunResult:
    """
    Compute every domain's snapshot for ``snapshot_date`` (default today).

    Domains run independently, each in its own session, up to ``max_workers``
    at a time. A failing domain is reported in the result and never stops its
    siblings. The cancel token is checked before each domain starts; a domain
    already writing finishes. Cached analytics for the computed domains are
    invalidated afterwards.
    """
    snapshot_date = snapshot_date or date.today()
    selected = [AnalyticsDomain(d) for d in domains] if domains is not None else list(AnalyticsDomain)
    workers = max(1, min(max_workers or settings.snapshot_max_workers, len(selected)))

    result = SnapshotRunResult(snapshot_date=snapshot_date)
    if workers == 1:
        outcomes = [_run_domain(session_factory, d, snapshot_date, cancel_token) for d in selected]
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="snapshot") as pool:
            outcomes = list(pool.map(lambda d: _run_domain(session_factory, d, snapshot_date, cancel_token), selected))
    for outcome in outcomes:
        result.domains[outcome.domain] = outcome

    if cache is not None:
        for domain, outcome in result.domains.items():
            if outcome.status == "ok":
                cache.invalidate(tag_for(domain))
        cache.invalidate(ALL_ANALYTICS_TAG)

    logger.info(
        "snapshot_run_finished",
        snapshot_date=snapshot_date.isoformat(),
        statuses={d.value: r.status for d, r in result.domains.items()},
    )
    return result


# --- Queries


def _snapshot_model(domain: AnalyticsDomain | str):
    try:
        return SNAPSHOT_MODELS[AnalyticsDomain(domain)]
    except ValueError as exc:
        raise ValidationError(f"Unknown analytics domain: {domain}") from exc


def snapshot_fields(domain: AnalyticsDomain | str) -> list[str]:
    model = _snapshot_model(domain)
    return [c.key for c in model.__table__.columns if c.key not in ("id", "snapshot_date")]


def snapshot_to_dict(row, fields: Sequence[str] | None = None) -> dict[str, Any]:
    keys = fields if fields is not None else [c.key for c in row.__table__.columns if c.key != "id"]
    out = {"snapshot_date": row.snapshot_date}
    out.update({k: getattr(row, k) for k in keys if k != "snapshot_date"})
    return out


def get_snapshot(session: Session, domain: AnalyticsDomain | str, snapshot_date: date):
    model = _snapshot_model(domain)
    return session.scalar(select(model).where(model.snapshot_date == snapshot_date))


def get_series(
    session: Session,
    domain: AnalyticsDomain | str,
    start: date,
    end: date,
    fields: Sequence[str] | None = None,
) -> list[dict[str, Any]]:
    """
    Snapshot rows with ``start <= snapshot_date <= end``, ascending by date.

    ``fields`` narrows each row to the named columns (``snapshot_date`` is
    always included); unknown names raise ``ValidationError``.
    """
    if end < start:
        raise ValidationError("Series end date must not be before start date")
    model = _snapshot_model(domain)
    if fields is not None:
        unknown = sorted(set(fields) - set(snapshot_fields(domain)))
        if unknown:
            raise ValidationError(f"Unknown snapshot fields for {AnalyticsDomain(domain).value}: {', '.join(unknown)}")

    rows = session.scalars(
        select(model)
        .where(model.snapshot_date >= start, model.snapshot_date <= end)
        .order_by(model.snapshot_date.asc())
    )
    return [snapshot_to_dict(row, fields) for row in rows]
