import asyncio

import pytest

from capacity_gate.models.scaling import ScalingAction
from capacity_gate.services.compute_control import InMemoryComputeControl
from capacity_gate.services.cost import estimate_cost_savings
from capacity_gate.services.metrics_client import InMemoryMetricsClient
from capacity_gate.services.notifications import InMemoryNotificationSink
from capacity_gate.services.scaling_controller import ScalingController, ScalingLoop
from capacity_gate.services.scaling_engine import CapacityBounds, ScalingDecisionEngine
from capacity_gate.services.scaling_executor import ScalingExecutor

SERVICE = "ai-agent-cluster/ai-agent-backend"


def make_controller(desired=2, requests=None, cpu=None, min_capacity=0, max_capacity=10, **metrics_kwargs):
    metrics = InMemoryMetricsClient(request_counts=requests, cpu_utilization=cpu, **metrics_kwargs)
    compute = InMemoryComputeControl({SERVICE: desired})
    sink = InMemoryNotificationSink()
    controller = ScalingController(
        SERVICE,
        metrics,
        compute,
        ScalingDecisionEngine(CapacityBounds(min_capacity, max_capacity)),
        ScalingExecutor(compute, sink),
    )
    return controller, compute, sink


@pytest.mark.asyncio
async def test_idle_service_scales_to_zero_with_savings():
    controller, compute, sink = make_controller(desired=2, requests=[0, 0, 0], cpu=[2.0, 3.0, 1.0])

    report = await controller.run_once()

    assert report.success
    assert report.action == ScalingAction.SCALE_TO_ZERO
    assert (report.previous_count, report.new_count) == (2, 0)
    assert compute.desired_counts[SERVICE] == 0
    assert report.cost_savings == estimate_cost_savings(2)
    assert len(sink.events) == 1


@pytest.mark.asyncio
async def test_traffic_at_zero_scales_from_zero():
    controller, compute, _ = make_controller(desired=0, requests=[5, 7, 3], cpu=[])

    report = await controller.run_once()

    assert report.action == ScalingAction.SCALE_FROM_ZERO
    assert compute.desired_counts[SERVICE] == 1
    assert report.cost_savings is None


@pytest.mark.asyncio
async def test_busy_service_scales_up():
    controller, compute, _ = make_controller(desired=2, requests=[100, 120, 90], cpu=[60.0, 65.0, 70.0])

    report = await controller.run_once()

    assert report.action == ScalingAction.SCALE_UP
    assert compute.updates == [(SERVICE, 3)]


@pytest.mark.asyncio
async def test_overlapping_ticks_agree_on_target():
    controller, compute, _ = make_controller(
        desired=2, requests=[100, 120, 90], cpu=[60.0, 65.0, 70.0], max_capacity=3
    )

    first, second = await asyncio.gather(controller.run_once(), controller.run_once())

    assert first.success and second.success
    assert 0 <= await compute.get_desired_count(SERVICE) <= 3
    assert {target for _, target in compute.updates} == {3}


@pytest.mark.asyncio
async def test_overlapping_ticks_at_max_stay_in_bounds():
    controller, compute, _ = make_controller(
        desired=3, requests=[100, 120, 90], cpu=[90.0, 95.0, 92.0], max_capacity=3
    )

    reports = await asyncio.gather(*(controller.run_once() for _ in range(3)))

    assert all(report.success for report in reports)
    assert compute.desired_counts[SERVICE] == 3
    assert compute.updates == []


@pytest.mark.asyncio
async def test_metrics_timeout_holds_capacity():
    controller, compute, _ = make_controller(
        desired=3, requests=[0, 0, 0], cpu=[1.0], delay=0.5, timeout_seconds=0.01
    )

    report = await controller.run_once()

    assert report.success
    assert report.action == ScalingAction.NO_CHANGE
    assert report.new_count == 3
    assert compute.updates == []


@pytest.mark.asyncio
async def test_metrics_failure_holds_capacity():
    controller, compute, _ = make_controller(desired=2, fail=True)

    report = await controller.run_once()

    assert report.action == ScalingAction.NO_CHANGE
    assert compute.updates == []


@pytest.mark.asyncio
async def test_apply_failure_is_reported_not_raised():
    controller, compute, _ = make_controller(desired=2, requests=[0, 0, 0], cpu=[1.0, 1.0, 1.0])
    compute.fail_updates = True

    report = await controller.run_once()

    assert report.success is False
    assert report.action == ScalingAction.SCALE_TO_ZERO
    assert report.new_count == 2
    assert "update unavailable" in report.error
    assert report.cost_savings is None


@pytest.mark.asyncio
async def test_describe_failure_is_reported():
    controller, compute, _ = make_controller(desired=2)
    compute.fail_describe = True

    report = await controller.run_once()

    assert report.success is False
    assert report.action is None
    assert report.error


@pytest.mark.asyncio
async def test_report_serializes():
    controller, _, _ = make_controller(desired=2, requests=[0, 0, 0], cpu=[1.0, 1.0, 1.0])
    data = (await controller.run_once()).to_dict()
    assert data["action"] == "scale_to_zero"
    assert data["cost_savings"]["hourly"] == pytest.approx(0.081, abs=1e-4)
    assert isinstance(data["timestamp"], str)


def test_cost_savings_rounding():
    savings = estimate_cost_savings(3)
    assert savings.hourly == 0.1214
    assert savings.daily == 2.91
    assert savings.monthly == 87.3
    assert estimate_cost_savings(0).monthly == 0


class TestScalingLoop:
    @pytest.mark.asyncio
    async def test_tick_records_last_report(self):
        controller, _, _ = make_controller(desired=2, requests=[30, 30, 30], cpu=[40.0, 40.0, 40.0])
        loop = ScalingLoop(controller, interval_seconds=60)

        report = await loop.tick()

        assert loop.tick_count == 1
        assert loop.last_report is report
        assert report.action == ScalingAction.NO_CHANGE

    @pytest.mark.asyncio
    async def test_tick_survives_unexpected_errors(self):
        controller, _, _ = make_controller(desired=2)

        async def broken():
            raise RuntimeError("boom")

        controller.run_once = broken
        loop = ScalingLoop(controller, interval_seconds=60)

        assert await loop.tick() is None
        assert loop.tick_count == 1

    @pytest.mark.asyncio
    async def test_start_runs_ticks_until_stopped(self):
        controller, _, _ = make_controller(desired=2, requests=[30, 30, 30], cpu=[40.0, 40.0, 40.0])
        loop = ScalingLoop(controller, interval_seconds=0.01)

        loop.start()
        assert loop.running
        for _ in range(100):
            if loop.tick_count >= 2:
                break
            await asyncio.sleep(0.01)
        await loop.stop()

        assert loop.tick_count >= 2
        assert not loop.running
