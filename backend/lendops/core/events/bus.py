"""
In-process domain event bus backed by the ``domain_events`` outbox.

Publishing only appends a row inside the caller's transaction. Delivery
happens after that transaction commits, either inline or on a small thread
pool, and every handler runs in its own session so a failing subscriber can
neither roll back the publisher nor another subscriber.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from lendops.core.config import settings
from lendops.core.events.models import DomainEventRecord, EventDeadLetter, EventProcessingLog
from lendops.core.events.types import DomainEvent, EventHandlerRegistration, EventProcessingResult
from lendops.core.middleware.context import get_actor_id, get_organization_id, get_request_id
from lendops.shared.cancellation import CancellationToken
from lendops.shared.enums import DispatchMode
from lendops.shared.exceptions import Conflict, HandlerFailure
from lendops.shared.utils import json_safe, utcnow

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PENDING_EVENTS_KEY = "lendops.pending_event_ids"

CONFLICT_ERRORS = (StaleDataError, IntegrityError)


@dataclass
class ReplayResult:
    aggregate_id: str
    aggregate_type: str | None
    events_total: int = 0
    events_replayed: int = 0
    cancelled: bool = False
    failures: list[EventProcessingResult] = field(default_factory=list)


class EventBus:
    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        *,
        mode: DispatchMode | None = None,
        max_workers: int | None = None,
        handler_max_attempts: int | None = None,
        handler_backoff_seconds: float | None = None,
        conflict_max_attempts: int | None = None,
        conflict_backoff_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.mode = DispatchMode(mode or settings.event_dispatch_mode)
        self._max_workers = max_workers or settings.event_dispatch_workers
        self._handler_max_attempts = handler_max_attempts or settings.event_handler_max_attempts
        self._handler_backoff = (
            settings.event_handler_backoff_seconds if handler_backoff_seconds is None else handler_backoff_seconds
        )
        self._conflict_max_attempts = conflict_max_attempts or settings.conflict_max_attempts
        self._conflict_backoff = (
            settings.conflict_backoff_seconds if conflict_backoff_seconds is None else conflict_backoff_seconds
        )

        self._lock = threading.RLock()
        self._registrations: dict[str, EventHandlerRegistration] = {}
        self._executor: ThreadPoolExecutor | None = None
        self._inflight: set[Future] = set()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, registration: EventHandlerRegistration) -> None:
        """Register a handler. A second registration under the same name replaces the first."""
        with self._lock:
            previous = self._registrations.get(registration.handler_name)
            self._registrations[registration.handler_name] = registration
        if previous is not None and previous.event_type != registration.event_type:
            logger.info(
                "event_handler_moved",
                handler=registration.handler_name,
                from_event_type=previous.event_type,
                to_event_type=registration.event_type,
            )

    def unsubscribe(self, handler_name: str) -> None:
        with self._lock:
            self._registrations.pop(handler_name, None)

    def handlers_for(self, event_type: str) -> list[EventHandlerRegistration]:
        """Enabled handlers for ``event_type``, highest priority first."""
        with self._lock:
            regs = [r for r in self._registrations.values() if r.event_type == event_type and r.is_enabled]
        # Stable on name so equal priorities run in a deterministic order.
        return sorted(regs, key=lambda r: (-r.priority, r.handler_name))

    # ------------------------------------------------------------------
    # Publishing (outbox)
    # ------------------------------------------------------------------

    def publish(
        self,
        session: Session,
        event_type: str,
        aggregate_id: str | uuid.UUID,
        aggregate_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        causation_id: str | None = None,
        correlation_id: str | None = None,
    ) -> DomainEvent:
        """Append an event to the caller's transaction and queue it for delivery after commit."""
        aggregate_id = str(aggregate_id)

        # Earlier events of this aggregate in the same unit of work must be visible to max().
        session.flush()
        current = session.scalar(
            select(func.max(DomainEventRecord.sequence_number)).where(
                DomainEventRecord.aggregate_type == aggregate_type,
                DomainEventRecord.aggregate_id == aggregate_id,
            )
        )

        meta: dict[str, Any] = {
            "userId": get_actor_id(),
            "organizationId": get_organization_id(),
            "source": "api",
        }
        meta.update({k: v for k, v in json_safe(metadata or {}).items() if v is not None})
        correlation_id = correlation_id or meta.get("correlationId") or get_request_id()
        causation_id = causation_id or meta.get("causationId")
        meta["correlationId"] = correlation_id
        meta["causationId"] = causation_id

        record = DomainEventRecord(
            id=uuid.uuid4(),
            event_type=event_type,
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            sequence_number=(current or 0) + 1,
            payload=json_safe(payload),
            event_metadata={k: v for k, v in meta.items() if v is not None},
            causation_id=causation_id,
            correlation_id=correlation_id,
            occurred_at=utcnow(),
            processing_status="pending",
        )
        session.add(record)
        session.flush()

        session.info.setdefault(PENDING_EVENTS_KEY, []).append(record.id)
        logger.debug(
            "event_published",
            event_id=str(record.id),
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            sequence_number=record.sequence_number,
        )
        return DomainEvent.from_record(record)

    @staticmethod
    def take_pending(session: Session) -> list[uuid.UUID]:
        return list(session.info.pop(PENDING_EVENTS_KEY, []))

    def commit_and_dispatch(self, session: Session, operation: Callable[[Session], T]) -> T:
        """
        Run ``operation`` as one unit of work: its writes and the events it
        publishes commit together, then the events are dispatched.

        Optimistic-lock and sequence collisions are retried with backoff; the
        operation is re-run from scratch each time, so it must load whatever
        it mutates through the session it is given.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(CONFLICT_ERRORS),
            stop=stop_after_attempt(self._conflict_max_attempts),
            wait=wait_exponential(multiplier=self._conflict_backoff, max=2),
            before_sleep=self._log_conflict_retry,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    result, event_ids = self._run_unit(session, operation)
        except CONFLICT_ERRORS as exc:
            logger.warning("unit_of_work_conflict", attempts=self._conflict_max_attempts, error=str(exc))
            raise Conflict("Concurrent update detected; please retry") from exc

        if event_ids:
            self.dispatch(event_ids)
        return result

    @staticmethod
    def _run_unit(session: Session, operation: Callable[[Session], T]) -> tuple[T, list[uuid.UUID]]:
        try:
            result = operation(session)
            session.flush()
            event_ids = EventBus.take_pending(session)
            session.commit()
        except Exception:
            session.rollback()
            session.info.pop(PENDING_EVENTS_KEY, None)
            raise
        return result, event_ids

    @staticmethod
    def _log_conflict_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info("unit_of_work_retry", attempt=retry_state.attempt_number, error=str(exc))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def dispatch(self, event_ids: Iterable[uuid.UUID]) -> list[EventProcessingResult]:
        """Deliver committed events. In background mode this returns immediately with no results."""
        ids = list(event_ids)
        if not ids:
            return []
        if self.mode == DispatchMode.background:
            future = self._get_executor().submit(self._deliver_many, ids)
            with self._lock:
                self._inflight.add(future)
            future.add_done_callback(self._forget_future)
            return []
        return self._deliver_many(ids)

    def wait_idle(self, timeout: float | None = None) -> None:
        """Block until background deliveries, including those queued by handlers meanwhile, have finished."""
        while True:
            with self._lock:
                pending = [f for f in self._inflight if not f.done()]
            if not pending:
                return
            for future in pending:
                future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="event-dispatch")
            return self._executor

    def _forget_future(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error("event_dispatch_crashed", error=str(exc))

    def _deliver_many(self, event_ids: list[uuid.UUID]) -> list[EventProcessingResult]:
        results: list[EventProcessingResult] = []
        for event_id in event_ids:
            results.extend(self.deliver(event_id))
        return results

    def deliver(self, event_id: uuid.UUID) -> list[EventProcessingResult]:
        """Run every current handler for one stored event and record the outcome on the event row."""
        event = self._load_event(event_id)
        if event is None:
            logger.warning("event_not_found", event_id=str(event_id))
            return []

        results = [self._run_handler(reg, event) for reg in self.handlers_for(event.event_type)]
        failures = [r for r in results if r.status == "failure"]

        with self._session_factory() as session:
            record = session.get(DomainEventRecord, event_id)
            if record is not None:
                record.processing_status = "failed" if failures else "processed"
                record.processed_at = utcnow()
                record.processing_error = "; ".join(f"{r.handler_name}: {r.error}" for r in failures) or None
                session.commit()
        return results

    def _load_event(self, event_id: uuid.UUID) -> DomainEvent | None:
        with self._session_factory() as session:
            record = session.get(DomainEventRecord, event_id)
            return DomainEvent.from_record(record) if record is not None else None

    def _run_handler(
        self,
        registration: EventHandlerRegistration,
        event: DomainEvent,
        *,
        park_on_failure: bool = True,
    ) -> EventProcessingResult:
        started = time.perf_counter()
        attempts = 0
        retrying = Retrying(
            stop=stop_after_attempt(self._handler_max_attempts),
            wait=wait_exponential(multiplier=self._handler_backoff, max=30),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self._invoke(registration, event)
        except Exception as exc:  # noqa: BLE001 - subscriber errors never reach the publisher
            elapsed = int((time.perf_counter() - started) * 1000)
            failure = HandlerFailure(str(event.id), registration.handler_name, str(exc))
            logger.error(
                "event_handler_failed",
                event_id=str(event.id),
                event_type=event.event_type,
                handler=registration.handler_name,
                attempts=attempts,
                error=failure.error,
            )
            self._write_log(event, registration.handler_name, "failure", attempts, elapsed, failure.error)
            if park_on_failure:
                self._park(event, registration.handler_name, attempts, failure.error)
            return EventProcessingResult(
                event_id=event.id,
                handler_name=registration.handler_name,
                status="failure",
                attempts=attempts,
                execution_time_ms=elapsed,
                error=failure.error,
            )

        elapsed = int((time.perf_counter() - started) * 1000)
        self._write_log(event, registration.handler_name, "success", attempts, elapsed, None)
        return EventProcessingResult(
            event_id=event.id,
            handler_name=registration.handler_name,
            status="success",
            attempts=attempts,
            execution_time_ms=elapsed,
        )

    def _invoke(self, registration: EventHandlerRegistration, event: DomainEvent) -> None:
        with self._session_factory() as session:
            _, follow_on = self._run_unit(session, lambda s: registration.handler(s, event))
        # Events a handler publishes are delivered once its writes are committed.
        self.dispatch(follow_on)

    def _write_log(
        self,
        event: DomainEvent,
        handler_name: str,
        status: str,
        attempts: int,
        elapsed_ms: int,
        error: str | None,
    ) -> None:
        with self._session_factory() as session:
            session.add(
                EventProcessingLog(
                    event_id=event.id,
                    handler_name=handler_name,
                    status=status,
                    attempts=attempts,
                    execution_time_ms=elapsed_ms,
                    error=error,
                    executed_at=utcnow(),
                )
            )
            session.commit()

    def _park(self, event: DomainEvent, handler_name: str, attempts: int, error: str) -> None:
        with self._session_factory() as session:
            existing = session.scalar(
                select(EventDeadLetter).where(
                    EventDeadLetter.event_id == event.id,
                    EventDeadLetter.handler_name == handler_name,
                    EventDeadLetter.resolved_at.is_(None),
                )
            )
            if existing is not None:
                existing.attempts += attempts
                existing.error = error
            else:
                session.add(
                    EventDeadLetter(
                        event_id=event.id,
                        event_type=event.event_type,
                        handler_name=handler_name,
                        attempts=attempts,
                        error=error,
                        created_at=utcnow(),
                    )
                )
            session.commit()

    # ------------------------------------------------------------------
    # Recovery jobs
    # ------------------------------------------------------------------

    def dispatch_pending(self, limit: int = 100) -> int:
        """Deliver events still marked pending, oldest first. Returns the number delivered."""
        with self._session_factory() as session:
            ids = list(
                session.scalars(
                    select(DomainEventRecord.id)
                    .where(DomainEventRecord.processing_status == "pending")
                    .order_by(DomainEventRecord.occurred_at.asc(), DomainEventRecord.sequence_number.asc())
                    .limit(limit)
                )
            )
        for event_id in ids:
            self.deliver(event_id)
        if ids:
            logger.info("outbox_dispatched", count=len(ids))
        return len(ids)

    def reprocess_dead_letters(self, limit: int = 100) -> int:
        """Retry parked (event, handler) pairs. Returns how many were resolved."""
        with self._session_factory() as session:
            letters = [
                (dl.id, dl.event_id, dl.handler_name)
                for dl in session.scalars(
                    select(EventDeadLetter)
                    .where(EventDeadLetter.resolved_at.is_(None))
                    .order_by(EventDeadLetter.created_at.asc())
                    .limit(limit)
                )
            ]

        resolved = 0
        touched: set[uuid.UUID] = set()
        for letter_id, event_id, handler_name in letters:
            with self._lock:
                registration = self._registrations.get(handler_name)
            event = self._load_event(event_id)
            if registration is None or event is None or not registration.is_enabled:
                logger.info("dead_letter_skipped", dead_letter_id=str(letter_id), handler=handler_name)
                continue

            result = self._run_handler(registration, event, park_on_failure=False)
            with self._session_factory() as session:
                letter = session.get(EventDeadLetter, letter_id)
                if letter is None:
                    continue
                letter.attempts += result.attempts
                if result.status == "success":
                    letter.resolved_at = utcnow()
                    resolved += 1
                    touched.add(event_id)
                else:
                    letter.error = result.error
                session.commit()

        for event_id in touched:
            self._mark_processed_if_clear(event_id)
        return resolved

    def _mark_processed_if_clear(self, event_id: uuid.UUID) -> None:
        with self._session_factory() as session:
            open_letters = session.scalar(
                select(func.count(EventDeadLetter.id)).where(
                    EventDeadLetter.event_id == event_id,
                    EventDeadLetter.resolved_at.is_(None),
                )
            )
            record = session.get(DomainEventRecord, event_id)
            if record is not None and not open_letters:
                record.processing_status = "processed"
                record.processing_error = None
                record.processed_at = utcnow()
                session.commit()

    # ------------------------------------------------------------------
    # History / replay
    # ------------------------------------------------------------------

    @staticmethod
    def get_event_history(
        session: Session,
        aggregate_id: str | uuid.UUID,
        aggregate_type: str | None = None,
    ) -> list[DomainEvent]:
        stmt = select(DomainEventRecord).where(DomainEventRecord.aggregate_id == str(aggregate_id))
        if aggregate_type is not None:
            stmt = stmt.where(DomainEventRecord.aggregate_type == aggregate_type)
        stmt = stmt.order_by(
            DomainEventRecord.sequence_number.asc(),
            DomainEventRecord.occurred_at.asc(),
        )
        return [DomainEvent.from_record(r) for r in session.scalars(stmt)]

    @staticmethod
    def recent_events(
        session: Session,
        since: datetime | None = None,
        limit: int = 50,
        event_types: Iterable[str] | None = None,
    ) -> list[DomainEvent]:
        """Newest events across all aggregates, for polling consumers."""
        stmt = select(DomainEventRecord)
        if since is not None:
            stmt = stmt.where(DomainEventRecord.occurred_at > since)
        if event_types:
            stmt = stmt.where(DomainEventRecord.event_type.in_(list(event_types)))
        stmt = stmt.order_by(DomainEventRecord.occurred_at.desc()).limit(max(1, min(limit, 500)))
        return [DomainEvent.from_record(r) for r in session.scalars(stmt)]

    def replay(
        self,
        aggregate_id: str | uuid.UUID,
        aggregate_type: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ReplayResult:
        """
        Re-run the current handlers over an aggregate's history in sequence order.

        Handlers must be idempotent: replaying an aggregate whose events were
        already delivered leaves derived state unchanged.
        """
        with self._session_factory() as session:
            history = self.get_event_history(session, aggregate_id, aggregate_type)

        result = ReplayResult(aggregate_id=str(aggregate_id), aggregate_type=aggregate_type, events_total=len(history))
        for event in history:
            if cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                logger.info("event_replay_cancelled", aggregate_id=str(aggregate_id), replayed=result.events_replayed)
                break
            for registration in self.handlers_for(event.event_type):
                outcome = self._run_handler(registration, event, park_on_failure=False)
                if outcome.status == "failure":
                    result.failures.append(outcome)
            result.events_replayed += 1

        logger.info(
            "event_replay_finished",
            aggregate_id=str(aggregate_id),
            total=result.events_total,
            replayed=result.events_replayed,
            failures=len(result.failures),
        )
        return result
