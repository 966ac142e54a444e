"""Tiered admission gate in front of the inference backend.

Two phases: ``admit`` decides before any expensive work, ``commit`` counts
the request after the work succeeded. A failed backend call therefore never
consumes quota, and a cache hit never reaches ``commit``.

``process`` chains the whole flow: quota -> rate limit -> cache -> backend
-> commit -> cache put.

Store outages follow ``fail_open``: when True (the default) requests are
admitted without quota checks and caching is skipped; when False they are
denied with ``STORE_UNAVAILABLE``.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional

from capacity_gate.core.exceptions import StoreUnavailableError
from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.admission import (
    AdmissionReason,
    AdmissionResult,
    BackendResult,
    CacheEntry,
    ProcessingResult,
    Recommendation,
    UsageRecord,
    UsageSnapshot,
)
from capacity_gate.models.tiers import TierConfig, TierTable
from capacity_gate.services import telemetry
from capacity_gate.services.rate_limiter import TierRateLimiter
from capacity_gate.services.recommendations import cache_hit_rate, recommend
from capacity_gate.services.result_cache import ResultCache, fingerprint
from capacity_gate.services.usage_ledger import UsageLedger


class AdmissionGate(LoggerMixin):

    def __init__(
        self,
        ledger: UsageLedger,
        cache: ResultCache,
        rate_limiter: TierRateLimiter,
        tiers: Optional[TierTable] = None,
        fail_open: bool = True,
    ):
        self.ledger = ledger
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.tiers = tiers or TierTable()
        self.fail_open = fail_open
        self.cache_hits = 0
        self.cache_misses = 0

    def _record(self, result: AdmissionResult) -> AdmissionResult:
        telemetry.ADMISSION_DECISIONS.labels(tier=result.tier, reason=result.reason.value).inc()
        return result

    def _store_outage(self, config: TierConfig, error: StoreUnavailableError) -> AdmissionResult:
        telemetry.STORE_ERRORS.labels(operation=error.operation).inc()
        policy = "allowing" if self.fail_open else "denying"
        self.logger.error(f"Usage store unavailable, {policy} request: {error}", tier=config.name)
        return self._record(AdmissionResult(
            allowed=self.fail_open,
            reason=AdmissionReason.STORE_UNAVAILABLE,
            tier=config.name,
        ))

    def _snapshot(
        self,
        user_id: str,
        config: TierConfig,
        daily: Optional[UsageRecord],
        monthly: Optional[UsageRecord],
    ) -> UsageSnapshot:
        return UsageSnapshot(
            user_id=user_id,
            tier=config.name,
            daily_count=daily.count if daily else 0,
            monthly_count=monthly.count if monthly else 0,
            daily_limit=config.daily_request_limit,
            monthly_limit=config.monthly_request_limit,
            daily_tokens=daily.tokens if daily else 0,
            monthly_tokens=monthly.tokens if monthly else 0,
            daily_cost=daily.cost if daily else 0.0,
            monthly_cost=monthly.cost if monthly else 0.0,
        )

    async def get_usage(self, user_id: str, tier: str) -> UsageSnapshot:
        """Current usage against the tier's limits; raises StoreUnavailableError"""
        config = self.tiers.resolve(tier)
        daily, monthly = await self.ledger.get_records(user_id)
        return self._snapshot(user_id, config, daily, monthly)

    @property
    def cache_hit_rate(self) -> Optional[float]:
        return cache_hit_rate(self.cache_hits, self.cache_misses)

    async def get_recommendations(self, user_id: str, tier: str) -> List[Recommendation]:
        """Cost optimization hints for the user; raises StoreUnavailableError"""
        usage = await self.get_usage(user_id, tier)
        return recommend(usage, self.cache_hit_rate)

    async def admit(self, user_id: str, tier: str, operation: str = "") -> AdmissionResult:
        """Decide whether a request may proceed to the backend"""
        config = self.tiers.resolve(tier)

        try:
            usage = await self.get_usage(user_id, config.name)
        except StoreUnavailableError as e:
            return self._store_outage(config, e)

        if usage.daily_limit_exceeded or usage.monthly_limit_exceeded:
            self.logger.info(
                f"Usage limit exceeded for user {user_id}",
                tier=config.name,
                operation=operation,
                daily=usage.daily_count,
                monthly=usage.monthly_count,
            )
            return self._record(AdmissionResult(
                allowed=False,
                reason=AdmissionReason.LIMIT_EXCEEDED,
                tier=config.name,
                remaining_daily=usage.remaining_daily,
                remaining_monthly=usage.remaining_monthly,
            ))

        try:
            rate = await self.rate_limiter.check(user_id, config)
        except StoreUnavailableError as e:
            return self._store_outage(config, e)

        if not rate.allowed:
            return self._record(AdmissionResult(
                allowed=False,
                reason=AdmissionReason.RATE_LIMITED,
                tier=config.name,
                remaining_daily=usage.remaining_daily,
                remaining_monthly=usage.remaining_monthly,
                retry_after=rate.retry_after,
            ))

        return self._record(AdmissionResult(
            allowed=True,
            reason=AdmissionReason.ALLOWED,
            tier=config.name,
            remaining_daily=usage.remaining_daily,
            remaining_monthly=usage.remaining_monthly,
        ))

    async def commit(
        self, user_id: str, tier: str, tokens: int = 0, cost: float = 0.0
    ) -> Optional[UsageSnapshot]:
        """Count one successfully processed request with its tokens and cost.

        Call exactly once per billable request.
        """
        config = self.tiers.resolve(tier)
        try:
            daily, monthly = await self.ledger.record_usage(user_id, config.name, tokens, cost)
        except StoreUnavailableError as e:
            telemetry.STORE_ERRORS.labels(operation=e.operation).inc()
            self.logger.error(f"Could not record usage for user {user_id}: {e}", tier=config.name)
            return None

        telemetry.USAGE_COMMITS.labels(tier=config.name).inc()
        return self._snapshot(user_id, config, daily, monthly)

    async def lookup_cache(self, key: str, config: TierConfig) -> Optional[CacheEntry]:
        try:
            entry = await self.cache.lookup(key, config)
        except StoreUnavailableError as e:
            telemetry.STORE_ERRORS.labels(operation=e.operation).inc()
            self.logger.warning(f"Result cache unavailable, skipping lookup: {e}")
            return None
        if self.cache.is_enabled_for(config):
            if entry:
                self.cache_hits += 1
            else:
                self.cache_misses += 1
            outcome = "hit" if entry else "miss"
            telemetry.CACHE_LOOKUPS.labels(tier=config.name, outcome=outcome).inc()
        return entry

    async def store_cache(self, key: str, payload: Any, config: TierConfig) -> None:
        try:
            await self.cache.put(key, payload, config)
        except StoreUnavailableError as e:
            telemetry.STORE_ERRORS.labels(operation=e.operation).inc()
            self.logger.warning(f"Result cache unavailable, not caching: {e}")
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Result for {key} is not cacheable, not caching: {e}", tier=config.name)

    async def process(
        self,
        user_id: str,
        tier: str,
        operation: str,
        content: Any,
        handler: Callable[[], Awaitable[Any]],
        options: Optional[Dict[str, Any]] = None,
    ) -> ProcessingResult:
        """Gate, serve from cache or run ``handler``, then account usage.

        ``handler`` may return a ``BackendResult`` to report the tokens and
        cost of the call; they are added to the usage record with the request.
        Exceptions from ``handler`` propagate and consume no quota.
        """
        admission = await self.admit(user_id, tier, operation)
        if not admission.allowed:
            return ProcessingResult(admission=admission)

        config = self.tiers.resolve(admission.tier)
        use_cache = admission.reason != AdmissionReason.STORE_UNAVAILABLE
        key = fingerprint(config.name, operation, content, options)

        if use_cache:
            entry = await self.lookup_cache(key, config)
            if entry is not None:
                return ProcessingResult(
                    admission=admission,
                    payload=entry.payload,
                    cached=True,
                    metadata={"fingerprint": key},
                )

        payload = await handler()
        tokens, cost = 0, 0.0
        if isinstance(payload, BackendResult):
            payload, tokens, cost = payload.payload, payload.tokens, payload.cost
        usage = await self.commit(user_id, config.name, tokens, cost)

        if use_cache:
            await self.store_cache(key, payload, config)

        return ProcessingResult(
            admission=admission,
            payload=payload,
            cached=False,
            usage=usage,
            metadata={"fingerprint": key},
        )
