"""Flow Engine Exceptions"""


class FlowEngineError(Exception):
    """Base exception for the flow engine"""
    pass


class TransientDeliveryError(FlowEngineError):
    """Delivery failed but may succeed on retry (timeouts, 5xx, throttling)"""
    pass


class PermanentDeliveryError(FlowEngineError):
    """Delivery rejected; retrying will not help"""
    pass


class DataUnavailableError(FlowEngineError):
    """Member or subscription data could not be read"""
    pass


class ConcurrencyConflict(FlowEngineError):
    """Another worker holds the run lease"""
    pass


class ConfigurationError(FlowEngineError):
    """A flow or step definition is malformed"""
    pass


class TagStoreError(FlowEngineError):
    """Tag association could not be changed"""
    pass
