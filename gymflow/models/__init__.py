"""
GymFlow Models Package
"""
from gymflow import db
from .flows import AutomatedFlow, FlowStep, TriggerType, ActionType, Channel
from .runs import FlowRun, StepExecutionRecord, FlowRunStatus, StepOutcome

__all__ = [
    'db', 'AutomatedFlow', 'FlowStep', 'TriggerType', 'ActionType', 'Channel',
    'FlowRun', 'StepExecutionRecord', 'FlowRunStatus', 'StepOutcome',
]
