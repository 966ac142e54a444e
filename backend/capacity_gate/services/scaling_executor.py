"""Applies scaling decisions to the compute-control endpoint.

One external call per non-NoChange decision, no in-loop retry: the next
scheduled tick re-evaluates from fresh metrics. Zero-boundary transitions
emit a best-effort notification.
"""
from __future__ import annotations

from typing import Optional

from capacity_gate.core.exceptions import ComputeControlError, ScalingApplyError
from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.scaling import AppliedChange, ScalingDecision
from capacity_gate.services import telemetry
from capacity_gate.services.compute_control import ComputeControl
from capacity_gate.services.notifications import NotificationSink, ScalingEvent


class ScalingExecutor(LoggerMixin):

    def __init__(self, compute: ComputeControl, notifier: Optional[NotificationSink] = None):
        self.compute = compute
        self.notifier = notifier

    async def execute(self, service_id: str, decision: ScalingDecision) -> AppliedChange:
        """Apply ``decision``; raises ScalingApplyError when compute control fails"""
        if decision.is_no_change:
            return AppliedChange(
                service_id=service_id,
                action=decision.action,
                target_count=decision.target_count,
                applied=False,
            )

        self.logger.info(
            f"Executing scaling action: {decision.action.value} to {decision.target_count} tasks",
            service_id=service_id,
            reason=decision.reason,
        )
        try:
            await self.compute.set_desired_count(service_id, decision.target_count)
        except ComputeControlError as e:
            telemetry.SCALING_APPLY_FAILURES.labels(action=decision.action.value).inc()
            self.logger.error(f"Failed to execute scaling action {decision.action.value}: {e}")
            raise ScalingApplyError(service_id, str(e), decision) from e

        self.logger.info("Scaling action completed successfully", service_id=service_id)

        notified = False
        if decision.action.crosses_zero:
            notified = await self._notify(service_id, decision)

        return AppliedChange(
            service_id=service_id,
            action=decision.action,
            target_count=decision.target_count,
            applied=True,
            notified=notified,
        )

    async def _notify(self, service_id: str, decision: ScalingDecision) -> bool:
        if self.notifier is None:
            return False
        event = ScalingEvent(
            service_id=service_id,
            action=decision.action.value,
            target_count=decision.target_count,
            reason=decision.reason,
        )
        try:
            await self.notifier.publish(event)
            return True
        except Exception as e:
            self.logger.warning(f"Scaling notification failed: {e}", service_id=service_id)
            return False
