"""
Automated Flow Definition Models
Flows and their ordered steps are authored by the dashboard admin surface;
the engine only reads them.
"""
from enum import Enum
import uuid

from gymflow import db
from gymflow.utils.clock import utcnow, isoformat


class TriggerType(str, Enum):
    NO_CHECKIN = 'NO_CHECKIN'
    MEMBERSHIP_EXPIRING = 'MEMBERSHIP_EXPIRING'
    NEW_SIGNUP = 'NEW_SIGNUP'
    BIRTHDAY = 'BIRTHDAY'
    CUSTOM = 'CUSTOM'


class ActionType(str, Enum):
    SEND_EMAIL = 'SEND_EMAIL'
    SEND_SMS = 'SEND_SMS'
    WAIT = 'WAIT'
    ADD_TAG = 'ADD_TAG'
    REMOVE_TAG = 'REMOVE_TAG'


class Channel(str, Enum):
    EMAIL = 'EMAIL'
    SMS = 'SMS'
    PUSH = 'PUSH'


MESSAGE_ACTIONS = (ActionType.SEND_EMAIL, ActionType.SEND_SMS)
TAG_ACTIONS = (ActionType.ADD_TAG, ActionType.REMOVE_TAG)


class AutomatedFlow(db.Model):
    __tablename__ = 'automated_flows'
    __table_args__ = {'extend_existing': True}

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    gym_id = db.Column(db.String(36), index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    trigger_type = db.Column(db.String(30), nullable=False)
    trigger_value = db.Column(db.Integer)  # days
    is_active = db.Column(db.Boolean, default=False, nullable=False)
    is_template = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    steps = db.relationship(
        'FlowStep',
        backref='flow',
        order_by='FlowStep.order',
        cascade='all, delete-orphan',
        lazy='selectin',
    )

    def to_dict(self):
        return {
            'id': self.id,
            'gym_id': self.gym_id,
            'name': self.name,
            'description': self.description,
            'trigger_type': self.trigger_type,
            'trigger_value': self.trigger_value,
            'is_active': self.is_active,
            'is_template': self.is_template,
            'steps': [step.to_dict() for step in self.steps],
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }


class FlowStep(db.Model):
    __tablename__ = 'flow_steps'
    __table_args__ = {'extend_existing': True}

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    flow_id = db.Column(db.String(36), db.ForeignKey('automated_flows.id', ondelete='CASCADE'), nullable=False, index=True)
    order = db.Column(db.Integer, nullable=False)
    action_type = db.Column(db.String(20), nullable=False)
    channel = db.Column(db.String(10))
    subject = db.Column(db.String(500))
    content = db.Column(db.Text)
    wait_days = db.Column(db.Integer)
    tag_id = db.Column(db.String(36))

    def to_dict(self):
        return {
            'order': self.order,
            'action_type': self.action_type,
            'channel': self.channel,
            'subject': self.subject,
            'content': self.content,
            'wait_days': self.wait_days,
            'tag_id': self.tag_id,
        }
