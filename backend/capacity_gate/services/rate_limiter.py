"""Per-tier short-window request cap.

Fixed windows counted with the store's atomic increment, so the cap holds
across processes. Independent of the daily/monthly ledger.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.tiers import TierConfig
from capacity_gate.services.store import KeyValueStore


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: Optional[float] = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class TierRateLimiter(LoggerMixin):

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def check(self, user_id: str, tier: TierConfig) -> RateLimitDecision:
        """Count this request in the current window and decide"""
        window_seconds = tier.rate_limit.window_seconds
        now = self.clock()
        window_index = int(now // window_seconds)
        window_end = (window_index + 1) * window_seconds

        key = f"ratelimit:{user_id}:{tier.name}:{window_index}"
        count = await self.store.incr(
            key,
            expire_at=datetime.fromtimestamp(math.ceil(window_end), tz=timezone.utc),
        )

        limit = tier.rate_limit.max_requests
        if count > limit:
            retry_after = round(window_end - now, 3)
            self.logger.warning(
                f"Rate limit exceeded for user {user_id}",
                tier=tier.name,
                request_count=count,
                limit=limit,
                window=window_seconds,
            )
            return RateLimitDecision(allowed=False, count=count, limit=limit, retry_after=retry_after)
        return RateLimitDecision(allowed=True, count=count, limit=limit)
