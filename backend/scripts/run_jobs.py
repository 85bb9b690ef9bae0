from __future__ import annotations

import argparse
import os
import sys
from datetime import date

import structlog

# Ensure `backend/` is importable when running as a script.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from lendops.core.db.session import get_session_local  # noqa: E402
from lendops.core.events.registry import get_event_bus  # noqa: E402
from lendops.core.logging import configure_logging  # noqa: E402
from lendops.domain.analytics.cache import get_analytics_cache  # noqa: E402
from lendops.domain.analytics.services.snapshots import compute_all  # noqa: E402
from lendops.domain.inspections.service import check_overdue_inspections  # noqa: E402
from lendops.domain.payments.service import check_late_payments  # noqa: E402
from lendops.shared.cancellation import CancellationToken  # noqa: E402

logger = structlog.get_logger("lendops.jobs")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}") from exc


def run_snapshots(args: argparse.Namespace) -> int:
    token = CancellationToken(deadline_seconds=args.deadline_seconds)
    result = compute_all(
        get_session_local(),
        args.date,
        cancel_token=token,
        cache=get_analytics_cache(),
        domains=args.domain or None,
    )
    statuses = " ".join(f"{d.value}={r.status}" for d, r in result.domains.items())
    print(f"SNAPSHOTS date={result.snapshot_date.isoformat()} {statuses}")
    return 0 if result.ok else 1


def run_late_payments(args: argparse.Namespace) -> int:
    with get_session_local()() as db:
        result = check_late_payments(db, get_event_bus(), as_of=args.date, delinquency_days=args.delinquency_days)
    print(f"LATE_PAYMENTS late={result.late_payments} delinquent_loans={result.delinquent_loans}")
    return 0


def run_overdue_inspections(args: argparse.Namespace) -> int:
    with get_session_local()() as db:
        result = check_overdue_inspections(db, get_event_bus(), as_of=args.date, grace_days=args.grace_days)
    print(f"INSPECTIONS due={result.due} overdue={result.overdue}")
    return 0


def run_dispatch_pending(args: argparse.Namespace) -> int:
    count = get_event_bus().dispatch_pending(limit=args.limit)
    print(f"DISPATCH_PENDING delivered={count}")
    return 0


def run_dead_letters(args: argparse.Namespace) -> int:
    count = get_event_bus().reprocess_dead_letters(limit=args.limit)
    print(f"DEAD_LETTERS resolved={count}")
    return 0


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run LendOps scheduled jobs (snapshots, monitors, outbox recovery).")
    sub = p.add_subparsers(dest="job", required=True)

    snap = sub.add_parser("snapshots", help="Compute daily analytics snapshots")
    snap.add_argument("--date", type=_parse_date, default=None, help="Snapshot date (default: today)")
    snap.add_argument("--domain", action="append", choices=["loans", "funds", "payments", "inspections"])
    snap.add_argument("--deadline-seconds", type=float, default=None, help="Stop starting new domains after this long")
    snap.set_defaults(func=run_snapshots)

    late = sub.add_parser("late-payments", help="Flag late payments and delinquent loans")
    late.add_argument("--date", type=_parse_date, default=None)
    late.add_argument("--delinquency-days", type=int, default=None)
    late.set_defaults(func=run_late_payments)

    insp = sub.add_parser("overdue-inspections", help="Emit due/overdue inspection events")
    insp.add_argument("--date", type=_parse_date, default=None)
    insp.add_argument("--grace-days", type=int, default=None)
    insp.set_defaults(func=run_overdue_inspections)

    pending = sub.add_parser("dispatch-pending", help="Deliver events left pending in the outbox")
    pending.add_argument("--limit", type=int, default=100)
    pending.set_defaults(func=run_dispatch_pending)

    dead = sub.add_parser("dead-letters", help="Retry parked handler deliveries")
    dead.add_argument("--limit", type=int, default=100)
    dead.set_defaults(func=run_dead_letters)
    return p


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _build_arg_parser().parse_args(argv)
    logger.info("job_started", job=args.job)
    try:
        return args.func(args)
    finally:
        # Background deliveries queued by the job must finish before exit.
        if get_event_bus.cache_info().currsize:
            get_event_bus().shutdown(wait=True)


if __name__ == "__main__":
    raise SystemExit(main())
