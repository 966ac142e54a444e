"""Telemetry access for the controlled service.

Every query is bounded by a timeout. A failed or timed-out query raises
``MetricsUnavailableError``; callers turn that into a no-signal window.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from capacity_gate.core.exceptions import MetricsUnavailableError
from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.scaling import CpuWindow, TrafficWindow

REQUEST_COUNT = "RequestCount"
CPU_UTILIZATION = "CPUUtilization"


@dataclass(frozen=True)
class Datapoint:
    timestamp: datetime
    value: float


def summarize_traffic(datapoints: Sequence[Datapoint], period_seconds: int) -> TrafficWindow:
    """Aggregate Sum datapoints into a TrafficWindow"""
    total = sum(point.value for point in datapoints)
    period_minutes = period_seconds / 60.0
    avg_per_minute = total / (len(datapoints) * period_minutes) if datapoints else 0.0
    return TrafficWindow(
        total_requests=int(total),
        avg_requests_per_minute=avg_per_minute,
        sample_count=len(datapoints),
    )


def summarize_cpu(datapoints: Sequence[Datapoint], high_threshold: float, low_threshold: float) -> CpuWindow:
    """Aggregate Average datapoints into a CpuWindow"""
    avg = sum(point.value for point in datapoints) / len(datapoints) if datapoints else 0.0
    return CpuWindow(
        avg_utilization_percent=max(0.0, min(100.0, avg)),
        sample_count=len(datapoints),
        high_threshold=high_threshold,
        low_threshold=low_threshold,
    )


class MetricsClient(ABC, LoggerMixin):
    """Windowed traffic and CPU telemetry for one service"""

    def __init__(
        self,
        window_minutes: int = 15,
        period_seconds: int = 300,
        timeout_seconds: float = 10.0,
        cpu_high_threshold: float = 70.0,
        cpu_low_threshold: float = 10.0,
    ):
        self.window_minutes = window_minutes
        self.period_seconds = period_seconds
        self.timeout_seconds = timeout_seconds
        self.cpu_high_threshold = cpu_high_threshold
        self.cpu_low_threshold = cpu_low_threshold

    @abstractmethod
    async def query(self, metric_name: str, statistic: str) -> List[Datapoint]:
        """Return datapoints for the look-back window, oldest first"""

    async def _bounded_query(self, metric_name: str, statistic: str) -> List[Datapoint]:
        try:
            return await asyncio.wait_for(self.query(metric_name, statistic), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise MetricsUnavailableError(metric_name, f"timed out after {self.timeout_seconds}s") from e

    async def get_traffic(self) -> TrafficWindow:
        datapoints = await self._bounded_query(REQUEST_COUNT, "Sum")
        return summarize_traffic(datapoints, self.period_seconds)

    async def get_cpu(self) -> CpuWindow:
        datapoints = await self._bounded_query(CPU_UTILIZATION, "Average")
        return summarize_cpu(datapoints, self.cpu_high_threshold, self.cpu_low_threshold)


def target_group_dimension(arn: str) -> str:
    """CloudWatch ``TargetGroup`` dimension value, e.g. ``targetgroup/web/73e2d6bc24d8a067``"""
    return arn.split(":")[-1]


def load_balancer_dimension(arn: str) -> str:
    """CloudWatch ``LoadBalancer`` dimension value, e.g. ``app/web/50dc6c495c0c9188``"""
    return arn.split(":loadbalancer/")[-1]


class CloudWatchMetricsClient(MetricsClient):
    """Reads ALB request counts and ECS CPU utilization from CloudWatch"""

    def __init__(
        self,
        cluster_name: str,
        service_name: str,
        target_group_arn: str,
        load_balancer_arn: str = "",
        region_name: str = "us-east-1",
        client: Any = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.cluster_name = cluster_name
        self.service_name = service_name
        self.target_group_arn = target_group_arn
        self.load_balancer_arn = load_balancer_arn
        if client is None:
            client = boto3.client(
                "cloudwatch",
                region_name=region_name,
                config=Config(
                    connect_timeout=self.timeout_seconds,
                    read_timeout=self.timeout_seconds,
                    retries={"max_attempts": 2},
                ),
            )
        self.cloudwatch = client

    def _request_params(self, metric_name: str) -> Dict[str, Any]:
        if metric_name == REQUEST_COUNT:
            dimensions = [{"Name": "TargetGroup", "Value": target_group_dimension(self.target_group_arn)}]
            if self.load_balancer_arn:
                dimensions.append({"Name": "LoadBalancer", "Value": load_balancer_dimension(self.load_balancer_arn)})
            return {"Namespace": "AWS/ApplicationELB", "Dimensions": dimensions}
        return {
            "Namespace": "AWS/ECS",
            "Dimensions": [
                {"Name": "ServiceName", "Value": self.service_name},
                {"Name": "ClusterName", "Value": self.cluster_name},
            ],
        }

    def _get_statistics(self, metric_name: str, statistic: str) -> List[Datapoint]:
        end_time = datetime.now(timezone.utc)
        start_time = end_time - timedelta(minutes=self.window_minutes)
        result = self.cloudwatch.get_metric_statistics(
            MetricName=metric_name,
            StartTime=start_time,
            EndTime=end_time,
            Period=self.period_seconds,
            Statistics=[statistic],
            **self._request_params(metric_name),
        )
        points = [
            Datapoint(timestamp=point["Timestamp"], value=float(point.get(statistic, 0.0)))
            for point in result.get("Datapoints", [])
        ]
        return sorted(points, key=lambda p: p.timestamp)

    async def query(self, metric_name: str, statistic: str) -> List[Datapoint]:
        try:
            return await asyncio.to_thread(self._get_statistics, metric_name, statistic)
        except (BotoCoreError, ClientError) as e:
            self.logger.warning(f"Could not get {metric_name} metrics: {e}")
            raise MetricsUnavailableError(metric_name, str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Malformed {metric_name} datapoints: {e!r}")
            raise MetricsUnavailableError(metric_name, f"malformed datapoints: {e!r}") from e


class InMemoryMetricsClient(MetricsClient):
    """Serves canned datapoints; used in memory mode and tests.

    ``fail`` makes queries raise, ``delay`` makes them slow (to exercise the timeout).
    """

    def __init__(
        self,
        request_counts: Optional[List[float]] = None,
        cpu_utilization: Optional[List[float]] = None,
        fail: bool = False,
        delay: float = 0.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.series: Dict[str, List[float]] = {
            REQUEST_COUNT: list(request_counts or []),
            CPU_UTILIZATION: list(cpu_utilization or []),
        }
        self.fail = fail
        self.delay = delay
        self.query_count = 0

    async def query(self, metric_name: str, statistic: str) -> List[Datapoint]:
        self.query_count += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise MetricsUnavailableError(metric_name, "telemetry backend unavailable")
        now = datetime.now(timezone.utc)
        values = self.series.get(metric_name, [])
        return [
            Datapoint(timestamp=now - timedelta(seconds=self.period_seconds * (len(values) - i)), value=v)
            for i, v in enumerate(values)
        ]
