"""
Flow Run Models
One FlowRun per member traversal of a flow, plus one execution record per
finished step.
"""
from enum import Enum
import json
import uuid

from gymflow import db
from gymflow.utils.clock import utcnow, isoformat


class FlowRunStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    WAITING = 'WAITING'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    FAILED = 'FAILED'


class StepOutcome(str, Enum):
    SUCCESS = 'SUCCESS'
    SKIPPED = 'SKIPPED'
    FAILED = 'FAILED'


OPEN_STATUSES = (FlowRunStatus.ACTIVE.value, FlowRunStatus.WAITING.value)
TERMINAL_STATUSES = (
    FlowRunStatus.COMPLETED.value,
    FlowRunStatus.CANCELLED.value,
    FlowRunStatus.FAILED.value,
)

_OPEN_RUN_CLAUSE = db.text("status IN ('ACTIVE', 'WAITING')")


class FlowRun(db.Model):
    __tablename__ = 'flow_runs'
    __table_args__ = (
        # At most one non-terminal run per (flow, member)
        db.Index(
            'uq_flow_runs_open_member',
            'flow_id',
            'member_id',
            unique=True,
            postgresql_where=_OPEN_RUN_CLAUSE,
            sqlite_where=_OPEN_RUN_CLAUSE,
        ),
        db.Index('ix_flow_runs_due', 'status', 'due_at'),
        {'extend_existing': True},
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    flow_id = db.Column(db.String(36), nullable=False, index=True)
    member_id = db.Column(db.String(36), nullable=False, index=True)
    current_step_index = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=FlowRunStatus.ACTIVE.value)
    due_at = db.Column(db.DateTime)
    enrolled_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_advanced_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    steps_snapshot = db.Column(db.Text, default='[]')  # JSON array
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)
    cancel_reason = db.Column(db.String(100))
    needs_review = db.Column(db.Boolean, nullable=False, default=False)

    lease_owner = db.Column(db.String(100))
    lease_expires_at = db.Column(db.DateTime)

    executions = db.relationship(
        'StepExecutionRecord',
        backref='run',
        order_by='StepExecutionRecord.step_index',
        lazy='select',
    )

    @property
    def steps_list(self):
        if isinstance(self.steps_snapshot, str):
            return json.loads(self.steps_snapshot or '[]')
        return self.steps_snapshot or []

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_executions=False):
        data = {
            'id': self.id,
            'flow_id': self.flow_id,
            'member_id': self.member_id,
            'current_step_index': self.current_step_index,
            'total_steps': len(self.steps_list),
            'status': self.status,
            'due_at': isoformat(self.due_at),
            'enrolled_at': isoformat(self.enrolled_at),
            'last_advanced_at': isoformat(self.last_advanced_at),
            'completed_at': isoformat(self.completed_at),
            'attempt_count': self.attempt_count,
            'last_error': self.last_error,
            'cancel_reason': self.cancel_reason,
            'needs_review': self.needs_review,
        }
        if include_executions:
            data['executions'] = [record.to_dict() for record in self.executions]
        return data


class StepExecutionRecord(db.Model):
    __tablename__ = 'flow_step_executions'
    __table_args__ = (
        db.UniqueConstraint('run_id', 'step_index', name='uq_flow_step_executions_run_step'),
        {'extend_existing': True},
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    run_id = db.Column(db.String(36), db.ForeignKey('flow_runs.id'), nullable=False, index=True)
    step_index = db.Column(db.Integer, nullable=False)
    action_type = db.Column(db.String(20))
    executed_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    outcome = db.Column(db.String(10), nullable=False)
    attempt_count = db.Column(db.Integer, nullable=False, default=1)
    error_detail = db.Column(db.Text)
    provider_message_id = db.Column(db.String(255))

    def to_dict(self):
        return {
            'id': self.id,
            'run_id': self.run_id,
            'step_index': self.step_index,
            'action_type': self.action_type,
            'executed_at': isoformat(self.executed_at),
            'outcome': self.outcome,
            'attempt_count': self.attempt_count,
            'error_detail': self.error_detail,
            'provider_message_id': self.provider_message_id,
        }
