"""Builds the controller and gate from settings.

``BACKEND_MODE`` picks production collaborators (CloudWatch, ECS, SNS,
Redis) or in-memory ones once, at construction time. Nothing else in the
package branches on the mode.
"""
from __future__ import annotations

from typing import Optional

from capacity_gate.core.config import Settings, settings as default_settings
from capacity_gate.models.tiers import TierTable
from capacity_gate.services.admission_gate import AdmissionGate
from capacity_gate.services.compute_control import (
    ComputeControl,
    EcsComputeControl,
    InMemoryComputeControl,
)
from capacity_gate.services.metrics_client import (
    CloudWatchMetricsClient,
    InMemoryMetricsClient,
    MetricsClient,
)
from capacity_gate.services.notifications import (
    LogNotificationSink,
    NotificationSink,
    SnsNotificationSink,
)
from capacity_gate.services.rate_limiter import TierRateLimiter
from capacity_gate.services.result_cache import ResultCache
from capacity_gate.services.scaling_controller import ScalingController, ScalingLoop
from capacity_gate.services.scaling_engine import CapacityBounds, ScalingDecisionEngine, ScalingThresholds
from capacity_gate.services.scaling_executor import ScalingExecutor
from capacity_gate.services.store import InMemoryStore, KeyValueStore, RedisStore
from capacity_gate.services.usage_ledger import UsageLedger


def build_store(config: Settings) -> KeyValueStore:
    if config.BACKEND_MODE == "aws":
        return RedisStore(config.REDIS_URL, password=config.REDIS_PASSWORD)
    return InMemoryStore()


def build_metrics_client(config: Settings) -> MetricsClient:
    common = dict(
        window_minutes=config.METRICS_WINDOW_MINUTES,
        period_seconds=config.METRICS_PERIOD_SECONDS,
        timeout_seconds=config.METRICS_TIMEOUT_SECONDS,
        cpu_high_threshold=config.CPU_HIGH_THRESHOLD,
        cpu_low_threshold=config.CPU_LOW_THRESHOLD,
    )
    if config.BACKEND_MODE == "aws":
        return CloudWatchMetricsClient(
            cluster_name=config.ECS_CLUSTER_NAME,
            service_name=config.ECS_SERVICE_NAME,
            target_group_arn=config.TARGET_GROUP_ARN,
            load_balancer_arn=config.LOAD_BALANCER_ARN,
            region_name=config.AWS_REGION,
            **common,
        )
    return InMemoryMetricsClient(**common)


def build_compute_control(config: Settings) -> ComputeControl:
    if config.BACKEND_MODE == "aws":
        return EcsComputeControl(region_name=config.AWS_REGION, timeout_seconds=config.METRICS_TIMEOUT_SECONDS)
    return InMemoryComputeControl({config.service_id: config.MIN_CAPACITY})


def build_notifier(config: Settings) -> NotificationSink:
    if config.BACKEND_MODE == "aws" and config.SNS_TOPIC_ARN:
        return SnsNotificationSink(config.SNS_TOPIC_ARN, region_name=config.AWS_REGION)
    return LogNotificationSink()


def build_tier_table(config: Settings) -> TierTable:
    if config.TIER_CONFIG_FILE:
        return TierTable.from_yaml(config.TIER_CONFIG_FILE)
    return TierTable()


def build_scaling_controller(
    config: Settings,
    metrics: Optional[MetricsClient] = None,
    compute: Optional[ComputeControl] = None,
    notifier: Optional[NotificationSink] = None,
) -> ScalingController:
    compute = compute or build_compute_control(config)
    engine = ScalingDecisionEngine(
        bounds=CapacityBounds(config.MIN_CAPACITY, config.MAX_CAPACITY),
        thresholds=ScalingThresholds(
            scale_up_requests_per_minute=config.SCALE_UP_REQUESTS_PER_MINUTE,
            scale_down_requests_per_minute=config.SCALE_DOWN_REQUESTS_PER_MINUTE,
        ),
    )
    return ScalingController(
        service_id=config.service_id,
        metrics=metrics or build_metrics_client(config),
        compute=compute,
        engine=engine,
        executor=ScalingExecutor(compute, notifier or build_notifier(config)),
        cost_per_task_hour=config.COST_PER_TASK_HOUR,
    )


def build_admission_gate(config: Settings, store: Optional[KeyValueStore] = None) -> AdmissionGate:
    store = store or build_store(config)
    return AdmissionGate(
        ledger=UsageLedger(store),
        cache=ResultCache(store, enabled=config.RESULT_CACHE_ENABLED),
        rate_limiter=TierRateLimiter(store),
        tiers=build_tier_table(config),
        fail_open=config.ADMISSION_FAIL_OPEN,
    )


# Global instances
_store: Optional[KeyValueStore] = None
_admission_gate: Optional[AdmissionGate] = None
_scaling_controller: Optional[ScalingController] = None
_scaling_loop: Optional[ScalingLoop] = None


def get_store() -> KeyValueStore:
    global _store
    if _store is None:
        _store = build_store(default_settings)
    return _store


def get_admission_gate() -> AdmissionGate:
    """Get the global admission gate instance"""
    global _admission_gate
    if _admission_gate is None:
        _admission_gate = build_admission_gate(default_settings, get_store())
    return _admission_gate


def get_scaling_controller() -> ScalingController:
    """Get the global scaling controller instance"""
    global _scaling_controller
    if _scaling_controller is None:
        _scaling_controller = build_scaling_controller(default_settings)
    return _scaling_controller


def get_scaling_loop() -> ScalingLoop:
    """Get the global scaling loop instance"""
    global _scaling_loop
    if _scaling_loop is None:
        _scaling_loop = ScalingLoop(get_scaling_controller(), default_settings.SCALING_INTERVAL_SECONDS)
    return _scaling_loop


def reset_providers() -> None:
    """Drop global instances so the next accessor rebuilds them"""
    global _store, _admission_gate, _scaling_controller, _scaling_loop
    _store = None
    _admission_gate = None
    _scaling_controller = None
    _scaling_loop = None
