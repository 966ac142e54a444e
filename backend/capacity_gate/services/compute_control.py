"""Compute-control endpoint: read and set the desired count of one service."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from capacity_gate.core.exceptions import ComputeControlError
from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.scaling import ServiceState


def split_service_id(service_id: str) -> Tuple[str, str]:
    """``cluster/service`` -> (cluster, service)"""
    cluster, _, service = service_id.partition("/")
    if not cluster or not service:
        raise ComputeControlError(service_id, "service id must look like 'cluster/service'")
    return cluster, service


class ComputeControl(ABC, LoggerMixin):
    """Desired-count control for a named service"""

    @abstractmethod
    async def describe(self, service_id: str) -> ServiceState:
        """Current state of the service"""

    @abstractmethod
    async def set_desired_count(self, service_id: str, count: int) -> None:
        """Set the desired count; setting the same value twice is harmless"""

    async def get_desired_count(self, service_id: str) -> int:
        return (await self.describe(service_id)).desired_count


class EcsComputeControl(ComputeControl):
    """ECS service desired-count control"""

    def __init__(self, region_name: str = "us-east-1", client: Any = None, timeout_seconds: float = 10.0):
        if client is None:
            client = boto3.client(
                "ecs",
                region_name=region_name,
                config=Config(connect_timeout=timeout_seconds, read_timeout=timeout_seconds),
            )
        self.ecs = client

    def _describe(self, service_id: str) -> ServiceState:
        cluster, service = split_service_id(service_id)
        result = self.ecs.describe_services(cluster=cluster, services=[service])
        services = result.get("services") or []
        if not services:
            raise ComputeControlError(service_id, f"Service {service} not found in cluster {cluster}")
        info = services[0]
        deployments = info.get("deployments") or []
        last_modified = deployments[0].get("updatedAt") if deployments else None
        return ServiceState(
            service_id=service_id,
            desired_count=int(info.get("desiredCount", 0)),
            running_count=int(info.get("runningCount", 0)),
            pending_count=int(info.get("pendingCount", 0)),
            status=info.get("status", "UNKNOWN"),
            last_modified=last_modified or datetime.now(timezone.utc),
        )

    def _update(self, service_id: str, count: int) -> None:
        cluster, service = split_service_id(service_id)
        self.ecs.update_service(cluster=cluster, service=service, desiredCount=count)

    async def describe(self, service_id: str) -> ServiceState:
        try:
            return await asyncio.to_thread(self._describe, service_id)
        except (BotoCoreError, ClientError) as e:
            raise ComputeControlError(service_id, f"describe_services failed: {e}") from e

    async def set_desired_count(self, service_id: str, count: int) -> None:
        try:
            await asyncio.to_thread(self._update, service_id, count)
        except (BotoCoreError, ClientError) as e:
            raise ComputeControlError(service_id, f"update_service failed: {e}") from e


class InMemoryComputeControl(ComputeControl):
    """Records desired counts in a dict; ``fail_updates`` simulates an API outage"""

    def __init__(self, desired_counts: Optional[Dict[str, int]] = None):
        self.desired_counts: Dict[str, int] = dict(desired_counts or {})
        self.updates: List[Tuple[str, int]] = []
        self.fail_updates = False
        self.fail_describe = False

    async def describe(self, service_id: str) -> ServiceState:
        if self.fail_describe:
            raise ComputeControlError(service_id, "describe unavailable")
        if service_id not in self.desired_counts:
            raise ComputeControlError(service_id, "service not found")
        count = self.desired_counts[service_id]
        return ServiceState(service_id=service_id, desired_count=count, running_count=count)

    async def set_desired_count(self, service_id: str, count: int) -> None:
        if self.fail_updates:
            raise ComputeControlError(service_id, "update unavailable")
        self.updates.append((service_id, count))
        self.desired_counts[service_id] = count
