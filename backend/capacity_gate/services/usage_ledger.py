"""Per-user request, token and cost totals by day and by month.

Records are created lazily by the first increment in a period and expire
at the period boundary. Increments use the store's atomic hash increment,
so concurrent first requests both count. The ledger does not decide when
to count; callers increment exactly once per billable request.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.admission import UsageRecord
from capacity_gate.services.store import KeyValueStore

COUNT_FIELD = "requests"
TOKENS_FIELD = "tokens"
COST_FIELD = "cost"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


def period_end(period_key: str) -> datetime:
    """First instant after the day (``YYYY-MM-DD``) or month (``YYYY-MM``) bucket"""
    if len(period_key) == 10:
        start = datetime.strptime(period_key, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        return start + timedelta(days=1)
    start = datetime.strptime(period_key, "%Y-%m").replace(tzinfo=timezone.utc)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class UsageLedger(LoggerMixin):

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    @staticmethod
    def record_key(user_id: str, period_key: str) -> str:
        return f"usage:{user_id}:{period_key}"

    def current_periods(self) -> Tuple[str, str]:
        now = self.clock()
        return day_key(now), month_key(now)

    @staticmethod
    def _to_record(user_id: str, period_key: str, data: Dict[str, str]) -> UsageRecord:
        return UsageRecord(
            user_id=data.get("user_id", user_id),
            tier=data.get("tier", ""),
            period_key=period_key,
            count=int(data.get(COUNT_FIELD, 0)),
            tokens=int(data.get(TOKENS_FIELD, 0)),
            cost=float(data.get(COST_FIELD, 0.0)),
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
            expires_at=period_end(period_key),
        )

    async def get(self, user_id: str, period_key: str) -> Optional[UsageRecord]:
        """Usage record for one period, None when nothing was counted yet"""
        data = await self.store.get_record(self.record_key(user_id, period_key))
        if not data:
            return None
        return self._to_record(user_id, period_key, data)

    async def get_count(self, user_id: str, period_key: str) -> int:
        record = await self.get(user_id, period_key)
        return record.count if record else 0

    async def increment(
        self,
        user_id: str,
        period_key: str,
        tier: str = "",
        amount: int = 1,
        tokens: int = 0,
        cost: float = 0.0,
    ) -> UsageRecord:
        """Atomically add ``amount`` requests plus their tokens and cost to one period"""
        now = self.clock().isoformat()
        data = await self.store.increment_record(
            self.record_key(user_id, period_key),
            COUNT_FIELD,
            amount=amount,
            defaults={"user_id": user_id, "tier": tier, "period": period_key, "created_at": now},
            updates={"updated_at": now},
            expire_at=period_end(period_key),
            increments={TOKENS_FIELD: int(tokens), COST_FIELD: float(cost)},
        )
        return self._to_record(user_id, period_key, data)

    async def increment_and_get(self, user_id: str, period_key: str, tier: str = "", amount: int = 1) -> int:
        """Atomically add ``amount`` and return the new count"""
        return (await self.increment(user_id, period_key, tier, amount)).count

    async def get_records(self, user_id: str) -> Tuple[Optional[UsageRecord], Optional[UsageRecord]]:
        """(daily, monthly) records for the current periods"""
        day, month = self.current_periods()
        daily, monthly = await asyncio.gather(self.get(user_id, day), self.get(user_id, month))
        return daily, monthly

    async def get_usage(self, user_id: str) -> Tuple[int, int]:
        """(daily, monthly) request counts for the current periods"""
        daily, monthly = await self.get_records(user_id)
        return (daily.count if daily else 0), (monthly.count if monthly else 0)

    async def record_usage(
        self, user_id: str, tier: str, tokens: int = 0, cost: float = 0.0
    ) -> Tuple[UsageRecord, UsageRecord]:
        """Count one billable request with its tokens and cost in both current periods"""
        if tokens < 0 or cost < 0:
            raise ValueError("tokens and cost must not be negative")
        day, month = self.current_periods()
        daily, monthly = await asyncio.gather(
            self.increment(user_id, day, tier, tokens=tokens, cost=cost),
            self.increment(user_id, month, tier, tokens=tokens, cost=cost),
        )
        self.logger.debug(
            f"Usage for {user_id}: daily={daily.count}, monthly={monthly.count}",
            tokens=tokens,
            cost=cost,
        )
        return daily, monthly

    async def record_request(self, user_id: str, tier: str, tokens: int = 0, cost: float = 0.0) -> Tuple[int, int]:
        """Count one billable request in both current periods; returns the new counts"""
        daily, monthly = await self.record_usage(user_id, tier, tokens, cost)
        return daily.count, monthly.count
