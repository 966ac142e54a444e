"""Error taxonomy for the capacity controller and admission gate."""
from typing import Optional


class CapacityGateError(Exception):
    """Base class for all errors raised by this package"""


class MetricsUnavailableError(CapacityGateError):
    """Telemetry query failed or exceeded its timeout"""

    def __init__(self, metric_name: str, message: str):
        super().__init__(f"{metric_name}: {message}")
        self.metric_name = metric_name


class ComputeControlError(CapacityGateError):
    """Reading or updating the controlled service failed"""

    def __init__(self, service_id: str, message: str):
        super().__init__(f"{service_id}: {message}")
        self.service_id = service_id


class ScalingApplyError(ComputeControlError):
    """Setting the desired count failed; left for the next scheduled cycle"""

    def __init__(self, service_id: str, message: str, decision=None):
        super().__init__(service_id, message)
        self.decision = decision


class StoreUnavailableError(CapacityGateError):
    """The ledger/cache key-value store could not be reached"""

    def __init__(self, operation: str, key: Optional[str] = None, cause: Optional[BaseException] = None):
        detail = f"store {operation} failed"
        if key:
            detail += f" for {key}"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)
        self.operation = operation
        self.key = key


class InvalidTierError(CapacityGateError):
    """A tier table definition is malformed"""


class NotificationError(CapacityGateError):
    """A notification sink failed to publish"""
