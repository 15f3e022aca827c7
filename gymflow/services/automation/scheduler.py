"""
Flow Step Scheduler
Advances due runs through their steps.

Each due run is claimed with a time-bounded lease (a conditional UPDATE on
flow_runs). Every later write is conditional on still holding that lease and
on the run still being open, so a cancellation that lands mid-tick stops the
cascade after the step in flight. A step whose execution record already says
SUCCESS/SKIPPED is never executed again; that is what makes a reclaimed lease
safe after a worker crash.

Leases are stamped and checked against the wall clock, not the tick's `now`:
a run claimed late in a long tick still gets the full lease from the moment
it was claimed. `now` only drives step timing (due_at, completed_at).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import os
import socket
import uuid
from typing import Dict, Optional

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gymflow.models.flows import AutomatedFlow, TAG_ACTIONS
from gymflow.models.runs import (
    FlowRun,
    FlowRunStatus,
    OPEN_STATUSES,
    StepExecutionRecord,
    StepOutcome,
)
from gymflow.utils.clock import utcnow
from .exceptions import ConcurrencyConflict, ConfigurationError, DataUnavailableError
from .executors import StepResult
from .steps import load_steps, snapshot_steps, validate_step

logger = logging.getLogger(__name__)

_TAG_ACTION_VALUES = {action.value for action in TAG_ACTIONS}


@dataclass
class _RunCursor:
    """Working copy of the leased run; the row is only written through _save."""
    id: str
    flow_id: str
    member_id: str
    index: int
    status: str
    attempts: int


def default_worker_id():
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"


class StepScheduler:

    def __init__(self, db_session, executors: Dict, member_directory,
                 lease_seconds=300, max_attempts=3, retry_base_seconds=300,
                 batch_size=200, worker_id=None, clock=None):
        self.db = db_session
        self.executors = executors
        self.member_directory = member_directory
        self.lease = timedelta(seconds=lease_seconds)
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.batch_size = batch_size
        self.worker_id = worker_id or default_worker_id()
        self.clock = clock or utcnow

    def tick(self, now: Optional[datetime] = None) -> Dict:
        """Advance every due run once. Returns per-outcome counts."""
        now = now or utcnow()
        summary = {
            'due': 0, 'completed': 0, 'waiting': 0, 'retrying': 0,
            'failed': 0, 'cancelled': 0, 'conflicts': 0, 'errors': 0,
        }
        summary['cancelled'] += self._cancel_runs_of_inactive_flows(now)

        for run_id in self._due_run_ids(now):
            summary['due'] += 1
            try:
                self._acquire_lease(run_id, now)
            except ConcurrencyConflict:
                summary['conflicts'] += 1
                continue

            try:
                state = self._process(run_id, now)
                summary[state] += 1
            except ConcurrencyConflict as e:
                logger.info(f"Run {run_id}: {e}")
                summary['conflicts'] += 1
            except SoftTimeLimitExceeded:
                self.db.rollback()
                logger.warning(f"Scheduler tick hit its time limit on run {run_id}, stopping: {summary}")
                raise
            except Exception:
                self.db.rollback()
                logger.exception(f"Run {run_id} errored during tick; will retry when lease is free")
                summary['errors'] += 1
            finally:
                self._release_lease(run_id)

        if summary['due']:
            logger.info(f"Scheduler tick {now.isoformat()}: {summary}")
        return summary

    def _cancel_runs_of_inactive_flows(self, now):
        """Open runs of a deactivated or deleted flow are cancelled even while still waiting."""
        cancelled = 0
        inactive = select(AutomatedFlow.id).where(AutomatedFlow.is_active.is_(False))
        existing = select(AutomatedFlow.id)
        for reason, clause in (
            ('flow_deactivated', FlowRun.flow_id.in_(inactive)),
            ('flow_deleted', FlowRun.flow_id.not_in(existing)),
        ):
            result = self.db.execute(
                update(FlowRun)
                .where(FlowRun.status.in_(OPEN_STATUSES), clause)
                .values(
                    status=FlowRunStatus.CANCELLED.value,
                    cancel_reason=reason,
                    completed_at=now,
                    due_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if result.rowcount:
                logger.info(f"Cancelled {result.rowcount} open runs ({reason})")
            cancelled += result.rowcount
        return cancelled

    # ==================== LEASING ====================

    def _due_run_ids(self, now):
        wall = self.clock()
        rows = self.db.query(FlowRun.id).filter(
            FlowRun.status.in_(OPEN_STATUSES),
            FlowRun.due_at <= now,
            or_(FlowRun.lease_expires_at.is_(None), FlowRun.lease_expires_at <= wall),
        ).order_by(FlowRun.due_at).limit(self.batch_size).all()
        return [row[0] for row in rows]

    def _acquire_lease(self, run_id, now):
        wall = self.clock()
        result = self.db.execute(
            update(FlowRun)
            .where(
                FlowRun.id == run_id,
                FlowRun.status.in_(OPEN_STATUSES),
                FlowRun.due_at <= now,
                or_(FlowRun.lease_expires_at.is_(None), FlowRun.lease_expires_at <= wall),
            )
            .values(lease_owner=self.worker_id, lease_expires_at=wall + self.lease)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"run {run_id} is leased by another worker")

    def _release_lease(self, run_id):
        try:
            self.db.execute(
                update(FlowRun)
                .where(FlowRun.id == run_id, FlowRun.lease_owner == self.worker_id)
                .values(lease_owner=None, lease_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not release lease on run {run_id}, it will expire: {e}")

    def _save(self, cursor, now, **values):
        values['lease_expires_at'] = self.clock() + self.lease
        result = self.db.execute(
            update(FlowRun)
            .where(
                FlowRun.id == cursor.id,
                FlowRun.lease_owner == self.worker_id,
                FlowRun.status.in_(OPEN_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"run {cursor.id} was cancelled or lost its lease")

        cursor.status = values.get('status', cursor.status)
        cursor.index = values.get('current_step_index', cursor.index)
        cursor.attempts = values.get('attempt_count', cursor.attempts)

    # ==================== STATE MACHINE ====================

    def _process(self, run_id, now):
        run = self.db.get(FlowRun, run_id)
        flow = self.db.get(AutomatedFlow, run.flow_id)
        if flow is None or not flow.is_active:
            reason = 'flow_deleted' if flow is None else 'flow_deactivated'
            self._finish(_cursor_for(run), now, FlowRunStatus.CANCELLED.value, cancel_reason=reason)
            logger.info(f"Run {run.id} cancelled: {reason}")
            return 'cancelled'

        steps = load_steps(run.steps_snapshot) if run.steps_snapshot is not None else snapshot_steps(flow)
        cursor = _cursor_for(run)

        while True:
            index = cursor.index
            if index == len(steps):
                self._finish(cursor, now, FlowRunStatus.COMPLETED.value, last_advanced_at=now)
                logger.info(f"Run {cursor.id} completed flow {flow.name}")
                return 'completed'
            if index < 0 or index > len(steps):
                return self._fail_configuration(cursor, now, f"step index {index} outside 0..{len(steps)}")

            step = steps[index]
            try:
                validate_step(step, index)
            except ConfigurationError as e:
                return self._fail_configuration(cursor, now, str(e))

            executor = self.executors.get(step.action_type)
            if executor is None:
                return self._fail_configuration(cursor, now, f"no executor for {step.action_type}")

            existing = self._record_for(cursor.id, index)
            if existing is not None:
                if existing.outcome == StepOutcome.FAILED.value:
                    self._finish(cursor, now, FlowRunStatus.FAILED.value, last_error=existing.error_detail)
                    return 'failed'
                logger.info(f"Run {cursor.id} step {index} already {existing.outcome}, advancing")
                self._advance(cursor, now)
                continue

            if step.is_wait and cursor.status == FlowRunStatus.ACTIVE.value:
                self._save(
                    cursor, now,
                    status=FlowRunStatus.WAITING.value,
                    due_at=now + timedelta(days=step.wait_days),
                )
                return 'waiting'

            member = None
            if executor.needs_member:
                try:
                    member = self.member_directory.get_member(cursor.member_id)
                except DataUnavailableError as e:
                    return self._handle_failure(cursor, step, StepResult.failed(str(e), retryable=True), now)
                if member is None:
                    self._finish(cursor, now, FlowRunStatus.CANCELLED.value, cancel_reason='member_not_found')
                    return 'cancelled'

            result = self._execute(executor, cursor, step, member)

            if result.outcome == StepOutcome.FAILED.value:
                if step.action_type not in _TAG_ACTION_VALUES:
                    return self._handle_failure(cursor, step, result, now)
                logger.warning(f"Run {cursor.id} tag step {index} failed, skipping: {result.detail}")
                result = StepResult.skipped(result.detail)

            self._record(cursor, step, result, now, cursor.attempts + 1)
            self._advance(cursor, now)

    def _execute(self, executor, cursor, step, member):
        try:
            return executor.execute(cursor, step, member)
        except SoftTimeLimitExceeded:
            raise
        except Exception as e:
            logger.exception(f"Executor {step.action_type} crashed on run {cursor.id}")
            return StepResult.failed(f"{type(e).__name__}: {e}", retryable=True)

    def _advance(self, cursor, now):
        self._save(
            cursor, now,
            current_step_index=cursor.index + 1,
            status=FlowRunStatus.ACTIVE.value,
            attempt_count=0,
            last_error=None,
            last_advanced_at=now,
            due_at=now,
        )

    def _handle_failure(self, cursor, step, result, now):
        attempts = cursor.attempts + 1
        if result.retryable and attempts < self.max_attempts:
            delay = self.retry_base_seconds * (2 ** (attempts - 1))
            self._save(
                cursor, now,
                attempt_count=attempts,
                last_error=result.detail,
                due_at=now + timedelta(seconds=delay),
            )
            logger.warning(
                f"Run {cursor.id} step {cursor.index} attempt {attempts}/{self.max_attempts} failed, "
                f"retrying in {delay}s: {result.detail}"
            )
            return 'retrying'

        self._record(cursor, step, result, now, attempts)
        self._finish(cursor, now, FlowRunStatus.FAILED.value, attempt_count=attempts, last_error=result.detail)
        logger.error(f"Run {cursor.id} failed at step {cursor.index} after {attempts} attempts: {result.detail}")
        return 'failed'

    def _fail_configuration(self, cursor, now, detail):
        logger.error(f"Run {cursor.id} has a malformed flow definition, flagged for review: {detail}")
        self._record(cursor, None, StepResult.failed(f"configuration error: {detail}"), now, cursor.attempts + 1)
        self._finish(
            cursor, now, FlowRunStatus.FAILED.value,
            needs_review=True,
            last_error=f"configuration error: {detail}",
        )
        return 'failed'

    def _finish(self, cursor, now, status, **values):
        self._save(cursor, now, status=status, completed_at=now, due_at=None, **values)

    # ==================== EXECUTION RECORDS ====================

    def _record_for(self, run_id, index):
        return self.db.query(StepExecutionRecord).filter_by(run_id=run_id, step_index=index).first()

    def _record(self, cursor, step, result, now, attempts):
        record = StepExecutionRecord(
            run_id=cursor.id,
            step_index=cursor.index,
            action_type=step.action_type if step else None,
            executed_at=now,
            outcome=result.outcome,
            attempt_count=attempts,
            error_detail=result.detail,
            provider_message_id=result.provider_message_id,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Run {cursor.id} step {cursor.index} was already recorded by another worker")


def _cursor_for(run):
    return _RunCursor(
        id=run.id,
        flow_id=run.flow_id,
        member_id=run.member_id,
        index=run.current_step_index,
        status=run.status,
        attempts=run.attempt_count or 0,
    )
