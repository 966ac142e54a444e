"""Scaling data model.

Windows are derived fresh on every control-loop tick and never persisted.
Decisions are immutable; the executor turns them into an ``AppliedChange``.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ScalingAction(str, Enum):
    """Scaling actions"""
    NO_CHANGE = "no_change"
    SCALE_TO_ZERO = "scale_to_zero"
    SCALE_FROM_ZERO = "scale_from_zero"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"

    @property
    def crosses_zero(self) -> bool:
        return self in (ScalingAction.SCALE_TO_ZERO, ScalingAction.SCALE_FROM_ZERO)


@dataclass(frozen=True)
class ServiceState:
    """Current state of the controlled service"""
    service_id: str
    desired_count: int
    running_count: int = 0
    pending_count: int = 0
    status: str = "ACTIVE"
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class TrafficWindow:
    """Request count over the look-back window.

    ``reliable`` is False when the telemetry query failed or timed out; such a
    window must never be read as "no traffic".
    """
    total_requests: int = 0
    avg_requests_per_minute: float = 0.0
    sample_count: int = 0
    reliable: bool = True

    @property
    def has_traffic(self) -> bool:
        return self.reliable and self.total_requests > 0

    @classmethod
    def no_signal(cls) -> TrafficWindow:
        return cls(reliable=False)


@dataclass(frozen=True)
class CpuWindow:
    """Average CPU utilization over the look-back window"""
    avg_utilization_percent: float = 0.0
    sample_count: int = 0
    high_threshold: float = 70.0
    low_threshold: float = 10.0
    reliable: bool = True

    @property
    def is_high(self) -> bool:
        return self.reliable and self.sample_count > 0 and self.avg_utilization_percent > self.high_threshold

    @property
    def is_low(self) -> bool:
        return self.reliable and self.sample_count > 0 and self.avg_utilization_percent < self.low_threshold

    @classmethod
    def no_signal(cls, high_threshold: float = 70.0, low_threshold: float = 10.0) -> CpuWindow:
        return cls(high_threshold=high_threshold, low_threshold=low_threshold, reliable=False)


@dataclass(frozen=True)
class ScalingDecision:
    """One scaling action with its target desired count"""
    action: ScalingAction
    target_count: int
    reason: str

    @property
    def is_no_change(self) -> bool:
        return self.action == ScalingAction.NO_CHANGE

    @classmethod
    def no_change(cls, current: int, reason: str = "Current capacity is appropriate for the load") -> ScalingDecision:
        return cls(ScalingAction.NO_CHANGE, current, reason)

    @classmethod
    def scale_to_zero(cls, reason: str = "No traffic detected and low CPU utilization") -> ScalingDecision:
        return cls(ScalingAction.SCALE_TO_ZERO, 0, reason)

    @classmethod
    def scale_from_zero(cls, target: int, reason: str = "Traffic detected, scaling up from zero") -> ScalingDecision:
        return cls(ScalingAction.SCALE_FROM_ZERO, target, reason)

    @classmethod
    def scale_up(cls, target: int, reason: str) -> ScalingDecision:
        return cls(ScalingAction.SCALE_UP, target, reason)

    @classmethod
    def scale_down(cls, target: int, reason: str) -> ScalingDecision:
        return cls(ScalingAction.SCALE_DOWN, target, reason)


@dataclass(frozen=True)
class AppliedChange:
    """Result of executing a decision against compute control"""
    service_id: str
    action: ScalingAction
    target_count: int
    applied: bool
    notified: bool = False
    applied_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CostSavings:
    """Estimated savings from running fewer tasks"""
    hourly: float
    daily: float
    monthly: float


@dataclass
class ScalingReport:
    """Outcome of one control-loop tick"""
    success: bool
    service_id: str
    action: Optional[ScalingAction] = None
    previous_count: Optional[int] = None
    new_count: Optional[int] = None
    reason: str = ""
    cost_savings: Optional[CostSavings] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value if self.action else None
        data["timestamp"] = self.timestamp.isoformat()
        return data
