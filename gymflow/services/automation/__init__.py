"""
Automated engagement flows: trigger evaluation, enrollment and step scheduling.
"""
from .exceptions import (
    ConcurrencyConflict,
    ConfigurationError,
    DataUnavailableError,
    FlowEngineError,
    PermanentDeliveryError,
    TagStoreError,
    TransientDeliveryError,
)
from .run_manager import FlowRunManager, TriggerCandidate
from .scheduler import StepScheduler
from .triggers import TriggerEvaluator

__all__ = [
    'FlowRunManager', 'TriggerCandidate', 'StepScheduler',
    'TriggerEvaluator', 'FlowEngineError', 'TransientDeliveryError', 'PermanentDeliveryError',
    'DataUnavailableError', 'ConcurrencyConflict', 'ConfigurationError', 'TagStoreError',
]
