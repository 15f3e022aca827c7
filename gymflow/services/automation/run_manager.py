"""
Flow Run Manager
Creates and cancels member runs. The partial unique index on flow_runs is the
authority for "one open run per (flow, member)"; everything else here is a
fast path in front of it.
"""
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from gymflow.models.flows import AutomatedFlow
from gymflow.models.runs import FlowRun, FlowRunStatus, OPEN_STATUSES, StepExecutionRecord
from gymflow.utils.clock import utcnow
from .steps import dump_steps, snapshot_steps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerCandidate:
    member_id: str
    flow_id: str
    matched_value: Optional[object] = None
    episode_start: Optional[datetime] = None


class FlowRunManager:

    def __init__(self, db_session):
        self.db = db_session

    # ==================== ENROLLMENT ====================

    def enroll(self, candidate: TriggerCandidate, now: Optional[datetime] = None) -> Optional[FlowRun]:
        """Start a run for the candidate unless one is already open."""
        now = now or utcnow()

        flow = self.db.get(AutomatedFlow, candidate.flow_id)
        if not flow or not flow.is_active:
            logger.info(f"Skipping enrollment: flow {candidate.flow_id} missing or inactive")
            return None

        if self.has_open_run(candidate.flow_id, candidate.member_id):
            return None

        steps = snapshot_steps(flow)
        run = FlowRun(
            flow_id=flow.id,
            member_id=candidate.member_id,
            current_step_index=0,
            status=FlowRunStatus.ACTIVE.value,
            due_at=now,
            enrolled_at=now,
            steps_snapshot=dump_steps(steps),
        )
        if not steps:
            run.status = FlowRunStatus.COMPLETED.value
            run.completed_at = now
            run.due_at = None

        self.db.add(run)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race against another worker enrolling the same pair
            self.db.rollback()
            logger.info(f"Member {candidate.member_id} already enrolled in flow {flow.name}")
            return None

        logger.info(f"Enrolled member {candidate.member_id} in flow {flow.name} (run {run.id})")
        return run

    # ==================== CANCELLATION ====================

    def cancel_runs_for_flow(self, flow_id: str, reason: str = 'flow_deactivated') -> int:
        count = self._cancel_where(FlowRun.flow_id == flow_id, reason)
        logger.info(f"Cancelled {count} runs of flow {flow_id} ({reason})")
        return count

    def cancel_runs_for_member(self, member_id: str, reason: str = 'member_ineligible') -> int:
        count = self._cancel_where(FlowRun.member_id == member_id, reason)
        logger.info(f"Cancelled {count} runs of member {member_id} ({reason})")
        return count

    def deactivate_flow(self, flow_id: str) -> Optional[int]:
        """Turn a flow off and cancel its open runs. Returns None if the flow does not exist."""
        flow = self.db.get(AutomatedFlow, flow_id)
        if not flow:
            return None
        flow.is_active = False
        self.db.commit()
        return self.cancel_runs_for_flow(flow_id, 'flow_deactivated')

    def _cancel_where(self, clause, reason):
        now = utcnow()
        result = self.db.execute(
            update(FlowRun)
            .where(clause, FlowRun.status.in_(OPEN_STATUSES))
            .values(
                status=FlowRunStatus.CANCELLED.value,
                cancel_reason=reason,
                completed_at=now,
                due_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    # ==================== QUERIES ====================

    def has_open_run(self, flow_id: str, member_id: str) -> bool:
        return self.db.query(FlowRun.id).filter(
            FlowRun.flow_id == flow_id,
            FlowRun.member_id == member_id,
            FlowRun.status.in_(OPEN_STATUSES),
        ).first() is not None

    def last_enrollment_at(self, flow_id: str, member_id: str) -> Optional[datetime]:
        return self.db.query(func.max(FlowRun.enrolled_at)).filter(
            FlowRun.flow_id == flow_id,
            FlowRun.member_id == member_id,
        ).scalar()

    def get_run(self, run_id: str) -> Optional[FlowRun]:
        return self.db.get(FlowRun, run_id)

    def list_runs(self, flow_id=None, member_id=None, status=None, limit=100) -> List[FlowRun]:
        query = self.db.query(FlowRun)
        if flow_id:
            query = query.filter(FlowRun.flow_id == flow_id)
        if member_id:
            query = query.filter(FlowRun.member_id == member_id)
        if status:
            query = query.filter(FlowRun.status == status)
        return query.order_by(FlowRun.enrolled_at.desc()).limit(limit).all()

    def list_executions(self, run_id: str) -> List[StepExecutionRecord]:
        return self.db.query(StepExecutionRecord).filter(
            StepExecutionRecord.run_id == run_id
        ).order_by(StepExecutionRecord.step_index).all()

    def status_counts(self) -> Dict[str, int]:
        rows = self.db.query(FlowRun.status, func.count(FlowRun.id)).group_by(FlowRun.status).all()
        return {status: count for status, count in rows}

    def review_count(self) -> int:
        return self.db.query(func.count(FlowRun.id)).filter(FlowRun.needs_review.is_(True)).scalar() or 0
