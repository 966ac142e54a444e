"""Cost-aware capacity control loop.

``ScalingController.run_once`` is one stateless tick: read the service,
observe traffic and CPU, decide, apply. It recomputes everything from
fresh state, so overlapping ticks are safe: the desired-count update is
idempotent. ``ScalingLoop`` triggers ticks on a fixed interval.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Tuple

from capacity_gate.core.exceptions import ComputeControlError, MetricsUnavailableError, ScalingApplyError
from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.scaling import CpuWindow, ScalingAction, ScalingReport, TrafficWindow
from capacity_gate.services import telemetry
from capacity_gate.services.compute_control import ComputeControl
from capacity_gate.services.cost import DEFAULT_COST_PER_TASK_HOUR, estimate_cost_savings
from capacity_gate.services.metrics_client import MetricsClient
from capacity_gate.services.scaling_engine import ScalingDecisionEngine
from capacity_gate.services.scaling_executor import ScalingExecutor


class ScalingController(LoggerMixin):

    def __init__(
        self,
        service_id: str,
        metrics: MetricsClient,
        compute: ComputeControl,
        engine: ScalingDecisionEngine,
        executor: ScalingExecutor,
        cost_per_task_hour: float = DEFAULT_COST_PER_TASK_HOUR,
    ):
        self.service_id = service_id
        self.metrics = metrics
        self.compute = compute
        self.engine = engine
        self.executor = executor
        self.cost_per_task_hour = cost_per_task_hour

    async def observe(self) -> Tuple[TrafficWindow, CpuWindow]:
        """Fetch both windows concurrently; failures become no-signal windows"""
        traffic, cpu = await asyncio.gather(
            self.metrics.get_traffic(),
            self.metrics.get_cpu(),
            return_exceptions=True,
        )
        if isinstance(traffic, MetricsUnavailableError):
            self.logger.warning(f"Traffic metrics unavailable: {traffic}")
            traffic = TrafficWindow.no_signal()
        elif isinstance(traffic, BaseException):
            raise traffic
        if isinstance(cpu, MetricsUnavailableError):
            self.logger.warning(f"CPU metrics unavailable: {cpu}")
            cpu = CpuWindow.no_signal(self.metrics.cpu_high_threshold, self.metrics.cpu_low_threshold)
        elif isinstance(cpu, BaseException):
            raise cpu
        return traffic, cpu

    async def run_once(self) -> ScalingReport:
        """Run one control-loop tick and report what happened"""
        try:
            state = await self.compute.describe(self.service_id)
        except ComputeControlError as e:
            self.logger.error(f"Could not read service state: {e}")
            return ScalingReport(success=False, service_id=self.service_id, error=str(e))

        traffic, cpu = await self.observe()
        self.logger.info(
            f"Current service status: desired={state.desired_count}, running={state.running_count}",
            traffic=traffic,
            cpu=cpu,
        )

        decision = self.engine.decide(state.desired_count, traffic, cpu)
        telemetry.SCALING_DECISIONS.labels(action=decision.action.value).inc()
        self.logger.info(
            f"Scaling decision: {decision.action.value} -> {decision.target_count}",
            reason=decision.reason,
        )

        report = ScalingReport(
            success=True,
            service_id=self.service_id,
            action=decision.action,
            previous_count=state.desired_count,
            new_count=decision.target_count,
            reason=decision.reason,
        )

        try:
            await self.executor.execute(self.service_id, decision)
        except ScalingApplyError as e:
            report.success = False
            report.new_count = state.desired_count
            report.error = str(e)
            return report

        if decision.action == ScalingAction.SCALE_TO_ZERO:
            report.cost_savings = estimate_cost_savings(state.desired_count, self.cost_per_task_hour)
            self.logger.info(
                f"Estimated cost savings: ${report.cost_savings.hourly}/hour, ${report.cost_savings.daily}/day"
            )
        return report


class ScalingLoop(LoggerMixin):
    """Invokes ``ScalingController.run_once`` every ``interval_seconds``"""

    def __init__(self, controller: ScalingController, interval_seconds: float = 300):
        self.controller = controller
        self.interval_seconds = interval_seconds
        self.last_report: Optional[ScalingReport] = None
        self.tick_count = 0
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        self.logger.info(f"Scaling loop started (interval {self.interval_seconds}s)")

    async def stop(self) -> None:
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.logger.info("Scaling loop stopped")

    async def tick(self) -> Optional[ScalingReport]:
        """One guarded tick; errors are logged and left for the next tick"""
        self.tick_count += 1
        try:
            report = await self.controller.run_once()
        except Exception as e:
            self.logger.error(f"Scaling tick failed: {e}")
            return None
        if not report.success:
            self.logger.warning(f"Scaling tick did not apply: {report.error}")
        self.last_report = report
        return report

    async def _run(self) -> None:
        while not self._shutdown_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
