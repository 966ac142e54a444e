"""Best-effort notifications for zero-boundary scaling transitions."""
from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from capacity_gate.core.exceptions import NotificationError
from capacity_gate.core.logger import LoggerMixin


@dataclass(frozen=True)
class ScalingEvent:
    service_id: str
    action: str
    target_count: int
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "action": self.action,
            "target_count": self.target_count,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


class NotificationSink(ABC, LoggerMixin):
    @abstractmethod
    async def publish(self, event: ScalingEvent) -> None:
        """Publish an event, raising NotificationError on failure"""


class LogNotificationSink(NotificationSink):
    """Writes events to the log; used when no topic is configured"""

    async def publish(self, event: ScalingEvent) -> None:
        self.logger.info(f"Scaling notification: {event.action} - {event.reason}", **event.to_dict())


class SnsNotificationSink(NotificationSink):
    """Publishes events to an SNS topic"""

    def __init__(self, topic_arn: str, region_name: str = "us-east-1", client: Any = None):
        self.topic_arn = topic_arn
        self.sns = client or boto3.client("sns", region_name=region_name)

    def _publish(self, event: ScalingEvent) -> None:
        message = (
            f"Service {event.service_id} scaled {event.action} to {event.target_count} tasks.\n"
            f"Reason: {event.reason}\n"
            f"Timestamp: {event.timestamp.isoformat()}"
        )
        self.sns.publish(
            TopicArn=self.topic_arn,
            Subject=f"ECS Auto-Scaling: {event.action}"[:100],
            Message=message,
            MessageAttributes={
                "event": {"DataType": "String", "StringValue": json.dumps(event.to_dict())},
            },
        )

    async def publish(self, event: ScalingEvent) -> None:
        try:
            await asyncio.to_thread(self._publish, event)
        except (BotoCoreError, ClientError) as e:
            raise NotificationError(f"SNS publish failed: {e}") from e


class InMemoryNotificationSink(NotificationSink):
    def __init__(self, fail: bool = False):
        self.events: List[ScalingEvent] = []
        self.fail = fail

    async def publish(self, event: ScalingEvent) -> None:
        if self.fail:
            raise NotificationError("sink unavailable")
        self.events.append(event)
