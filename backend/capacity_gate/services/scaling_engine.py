"""Scaling decision engine.

A pure function of (current desired count, traffic window, CPU window,
capacity bounds, thresholds). No I/O, never raises once constructed.

Rules, first match wins:

1. scale to zero   - min capacity is 0, no traffic, low CPU with samples
2. bound correction - current count outside [min, max] is pulled back in
3. no signal        - traffic telemetry unavailable, hold
4. scale from zero  - traffic seen while at zero
5. scale up         - busy (traffic or CPU) and below max, +1
6. scale down       - quiet (traffic and CPU) and above the floor, -1
7. no change

Steps of one instance keep the fleet from oscillating; the zero boundary is
checked first because it dominates cost.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from capacity_gate.models.scaling import CpuWindow, ScalingDecision, TrafficWindow


@dataclass(frozen=True)
class ScalingThresholds:
    """Traffic bands; CPU bands travel with each CpuWindow"""
    scale_up_requests_per_minute: float = 10.0
    scale_down_requests_per_minute: float = 2.0

    def __post_init__(self):
        if self.scale_down_requests_per_minute > self.scale_up_requests_per_minute:
            raise ValueError("scale-down traffic threshold must not exceed scale-up threshold")


@dataclass(frozen=True)
class CapacityBounds:
    min_capacity: int = 0
    max_capacity: int = 10

    def __post_init__(self):
        if self.min_capacity < 0 or self.max_capacity < 1 or self.min_capacity > self.max_capacity:
            raise ValueError(
                f"invalid capacity bounds [{self.min_capacity}, {self.max_capacity}]"
            )

    @property
    def floor(self) -> int:
        """Lowest count reachable by ordinary scale-down"""
        return max(1, self.min_capacity)


class ScalingDecisionEngine:
    """Decides one scaling action per control-loop tick"""

    def __init__(self, bounds: CapacityBounds = CapacityBounds(), thresholds: ScalingThresholds = ScalingThresholds()):
        self.bounds = bounds
        self.thresholds = thresholds

    def decide(self, current: int, traffic: TrafficWindow, cpu: CpuWindow) -> ScalingDecision:
        bounds = self.bounds
        current = max(0, current)

        if (
            traffic.reliable
            and bounds.min_capacity == 0
            and current > 0
            and not traffic.has_traffic
            and cpu.is_low
            and cpu.sample_count > 0
        ):
            return ScalingDecision.scale_to_zero()

        corrected = self._correct_bounds(current)
        if corrected is not None:
            return corrected

        if not traffic.reliable:
            return ScalingDecision.no_change(current, "No reliable traffic signal, holding current capacity")

        if current == 0 and traffic.has_traffic:
            return ScalingDecision.scale_from_zero(bounds.floor)

        load = self._describe_load(traffic, cpu)

        if 0 < current < bounds.max_capacity and (
            traffic.avg_requests_per_minute > self.thresholds.scale_up_requests_per_minute or cpu.is_high
        ):
            return ScalingDecision.scale_up(
                min(bounds.max_capacity, current + 1),
                f"High load detected: {load}",
            )

        if (
            current > bounds.floor
            and traffic.avg_requests_per_minute < self.thresholds.scale_down_requests_per_minute
            and cpu.is_low
        ):
            return ScalingDecision.scale_down(
                max(bounds.floor, current - 1),
                f"Low load detected: {load}",
            )

        return ScalingDecision.no_change(current)

    def _correct_bounds(self, current: int) -> Optional[ScalingDecision]:
        bounds = self.bounds
        if current > bounds.max_capacity:
            return ScalingDecision.scale_down(
                bounds.max_capacity,
                f"Desired count {current} above max capacity {bounds.max_capacity}",
            )
        if current < bounds.min_capacity:
            reason = f"Desired count {current} below min capacity {bounds.min_capacity}"
            if current == 0:
                return ScalingDecision.scale_from_zero(bounds.min_capacity, reason)
            return ScalingDecision.scale_up(bounds.min_capacity, reason)
        return None

    @staticmethod
    def _describe_load(traffic: TrafficWindow, cpu: CpuWindow) -> str:
        cpu_text = f"{cpu.avg_utilization_percent:.1f}% CPU" if cpu.sample_count else "no CPU samples"
        return f"{traffic.avg_requests_per_minute:.2f} req/min, {cpu_text}"
