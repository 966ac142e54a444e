import pytest

from capacity_gate.core.exceptions import StoreUnavailableError
from capacity_gate.models.admission import AdmissionReason, BackendResult, RecommendationType
from capacity_gate.services.admission_gate import AdmissionGate
from capacity_gate.services.result_cache import ResultCache, fingerprint


class Payload:
    def __init__(self, value):
        self.value = value


class Backend:
    """Counts invocations of the expensive handler"""

    def __init__(self, payload="processed", error=None):
        self.payload = payload
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.payload


class TestAdmit:
    @pytest.mark.asyncio
    async def test_fresh_user_is_admitted(self, gate):
        result = await gate.admit("user-1", "PRO", "summarize")
        assert result.allowed
        assert result.reason == AdmissionReason.ALLOWED
        assert (result.remaining_daily, result.remaining_monthly) == (500, 10000)

    @pytest.mark.asyncio
    async def test_admit_does_not_count_usage(self, gate):
        await gate.admit("user-1", "PRO")
        assert (await gate.get_usage("user-1", "PRO")).daily_count == 0

    @pytest.mark.asyncio
    async def test_daily_limit_exceeded(self, gate, ledger):
        await ledger.increment_and_get("user-1", "2026-03-15", amount=10)

        result = await gate.admit("user-1", "FREE")

        assert not result.allowed
        assert result.reason == AdmissionReason.LIMIT_EXCEEDED
        assert result.remaining_daily == 0

    @pytest.mark.asyncio
    async def test_monthly_limit_exceeded(self, gate, ledger):
        await ledger.increment_and_get("user-1", "2026-03", amount=100)
        result = await gate.admit("user-1", "FREE")
        assert result.reason == AdmissionReason.LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_one_below_limit_is_admitted(self, gate, ledger):
        await ledger.increment_and_get("user-1", "2026-03-15", amount=9)
        result = await gate.admit("user-1", "FREE")
        assert result.allowed
        assert result.remaining_daily == 1

    @pytest.mark.asyncio
    async def test_unknown_tier_gets_free_limits(self, gate, ledger):
        await ledger.increment_and_get("user-1", "2026-03-15", amount=10)

        result = await gate.admit("user-1", "GOLD")

        assert result.tier == "FREE"
        assert result.reason == AdmissionReason.LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_rate_limited_with_retry_after(self, gate):
        assert (await gate.admit("user-1", "FREE")).allowed

        result = await gate.admit("user-1", "FREE")

        assert not result.allowed
        assert result.reason == AdmissionReason.RATE_LIMITED
        assert 0 < result.retry_after <= 60

    @pytest.mark.asyncio
    async def test_quota_is_checked_before_rate_limit(self, gate, ledger):
        await gate.admit("user-1", "FREE")
        await ledger.increment_and_get("user-1", "2026-03-15", amount=10)
        assert (await gate.admit("user-1", "FREE")).reason == AdmissionReason.LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_store_outage_fails_open(self, gate, store):
        store.available = False
        result = await gate.admit("user-1", "PRO")
        assert result.allowed
        assert result.reason == AdmissionReason.STORE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_store_outage_fails_closed(self, ledger, result_cache, rate_limiter, tiers, store):
        gate = AdmissionGate(ledger, result_cache, rate_limiter, tiers, fail_open=False)
        store.available = False
        result = await gate.admit("user-1", "PRO")
        assert not result.allowed
        assert result.reason == AdmissionReason.STORE_UNAVAILABLE


class TestCommit:
    @pytest.mark.asyncio
    async def test_commit_counts_once(self, gate):
        snapshot = await gate.commit("user-1", "PRO")
        assert (snapshot.daily_count, snapshot.monthly_count) == (1, 1)
        assert snapshot.remaining_daily == 499

    @pytest.mark.asyncio
    async def test_commit_under_outage_returns_none(self, gate, store):
        store.available = False
        assert await gate.commit("user-1", "PRO") is None

    @pytest.mark.asyncio
    async def test_tenth_request_exhausts_free_tier(self, gate, clock):
        for _ in range(10):
            assert (await gate.admit("user-1", "FREE")).allowed
            await gate.commit("user-1", "FREE")
            clock.advance(60)

        assert (await gate.get_usage("user-1", "FREE")).daily_limit_exceeded
        assert (await gate.admit("user-1", "FREE")).reason == AdmissionReason.LIMIT_EXCEEDED


class TestProcess:
    @pytest.mark.asyncio
    async def test_miss_runs_backend_commits_and_caches(self, gate):
        backend = Backend({"summary": "short"})

        result = await gate.process("user-1", "PRO", "summarize", "some text", backend)

        assert result.allowed and not result.cached
        assert result.payload == {"summary": "short"}
        assert backend.calls == 1
        assert result.usage.daily_count == 1
        assert result.metadata["fingerprint"] == fingerprint("PRO", "summarize", "some text")

    @pytest.mark.asyncio
    async def test_cache_hit_skips_backend_and_quota(self, gate):
        backend = Backend("answer")
        await gate.process("user-1", "PRO", "summarize", "some text", backend)

        result = await gate.process("user-1", "PRO", "summarize", "  some   text ", backend)

        assert result.cached
        assert result.payload == "answer"
        assert backend.calls == 1
        assert (await gate.get_usage("user-1", "PRO")).daily_count == 1

    @pytest.mark.asyncio
    async def test_cache_is_shared_across_users_of_a_tier(self, gate):
        backend = Backend("answer")
        await gate.process("user-1", "PRO", "summarize", "text", backend)
        assert (await gate.process("user-2", "PRO", "summarize", "text", backend)).cached
        assert (await gate.get_usage("user-2", "PRO")).daily_count == 0

    @pytest.mark.asyncio
    async def test_cache_is_not_shared_across_tiers(self, gate):
        backend = Backend("answer")
        await gate.process("user-1", "PRO", "summarize", "text", backend)
        result = await gate.process("user-2", "BASIC", "summarize", "text", backend)
        assert not result.cached
        assert backend.calls == 2

    @pytest.mark.asyncio
    async def test_unknown_tier_uses_free_cache_namespace(self, gate):
        backend = Backend("answer")
        result = await gate.process("user-1", "GOLD", "summarize", "text", backend)
        assert result.admission.tier == "FREE"
        assert result.metadata["fingerprint"].startswith("result:FREE:")

    @pytest.mark.asyncio
    async def test_backend_failure_consumes_no_quota(self, gate):
        backend = Backend(error=RuntimeError("model overloaded"))

        with pytest.raises(RuntimeError):
            await gate.process("user-1", "PRO", "summarize", "text", backend)

        assert (await gate.get_usage("user-1", "PRO")).daily_count == 0
        retry = await gate.process("user-1", "PRO", "summarize", "text", Backend("ok"))
        assert not retry.cached

    @pytest.mark.asyncio
    async def test_denied_request_never_reaches_backend(self, gate, ledger):
        await ledger.increment_and_get("user-1", "2026-03-15", amount=10)
        backend = Backend()

        result = await gate.process("user-1", "FREE", "summarize", "text", backend)

        assert not result.allowed
        assert result.admission.reason == AdmissionReason.LIMIT_EXCEEDED
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_fail_open_skips_cache_and_accounting(self, gate, store):
        store.available = False
        backend = Backend("answer")

        result = await gate.process("user-1", "PRO", "summarize", "text", backend)

        assert result.allowed
        assert result.payload == "answer"
        assert result.usage is None
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_tier_always_runs_backend(self, ledger, store, clock, rate_limiter, tiers):
        gate = AdmissionGate(ledger, ResultCache(store, enabled=False, clock=clock.now), rate_limiter, tiers)
        backend = Backend("answer")
        await gate.process("user-1", "PRO", "summarize", "text", backend)
        await gate.process("user-1", "PRO", "summarize", "text", backend)
        assert backend.calls == 2
        assert (await gate.get_usage("user-1", "PRO")).daily_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [b"%PDF-1.7", Payload("ok")])
    async def test_uncacheable_result_is_returned_and_counted_once(self, gate, payload):
        backend = Backend(payload)

        result = await gate.process("user-1", "PRO", "convert", "file", backend)

        assert result.payload is payload
        assert not result.cached
        assert result.usage.daily_count == 1

        again = await gate.process("user-1", "PRO", "convert", "file", backend)
        assert not again.cached
        assert backend.calls == 2
        assert (await gate.get_usage("user-1", "PRO")).daily_count == 2

    @pytest.mark.asyncio
    async def test_corrupt_cache_entry_is_treated_as_miss(self, gate, store):
        key = fingerprint("PRO", "summarize", "text")
        await store.set(key, "not-json", 3600)
        backend = Backend("answer")

        result = await gate.process("user-1", "PRO", "summarize", "text", backend)

        assert result.payload == "answer"
        assert not result.cached
        assert backend.calls == 1
        assert (await gate.process("user-2", "PRO", "summarize", "text", backend)).cached

    @pytest.mark.asyncio
    async def test_backend_reports_tokens_and_cost(self, gate):
        backend = Backend(BackendResult({"summary": "short"}, tokens=1500, cost=0.0225))

        result = await gate.process("user-1", "PRO", "summarize", "text", backend)

        assert result.payload == {"summary": "short"}
        assert result.usage.daily_tokens == 1500
        assert result.usage.monthly_cost == pytest.approx(0.0225)

        cached = await gate.process("user-1", "PRO", "summarize", "text", backend)
        assert cached.cached
        assert cached.payload == {"summary": "short"}
        usage = await gate.get_usage("user-1", "PRO")
        assert (usage.daily_count, usage.daily_tokens) == (1, 1500)


class TestRecommendations:
    @pytest.mark.asyncio
    async def test_heavy_user(self, gate):
        for _ in range(21):
            await gate.commit("user-1", "PRO", tokens=10000, cost=3.0)

        recs = await gate.get_recommendations("user-1", "PRO")

        assert [r.type for r in recs] == [RecommendationType.COST_REDUCTION, RecommendationType.BATCH_PROCESSING]
        assert recs[0].potential_savings == pytest.approx(12.6)

    @pytest.mark.asyncio
    async def test_cache_misses_suggest_caching(self, gate):
        backend = Backend("answer")
        await gate.process("user-1", "PRO", "summarize", "first", backend)
        await gate.process("user-1", "PRO", "summarize", "second", backend)

        assert gate.cache_hit_rate == 0.0
        recs = await gate.get_recommendations("user-1", "PRO")
        assert [r.type for r in recs] == [RecommendationType.CACHE_OPTIMIZATION]

    @pytest.mark.asyncio
    async def test_store_outage_raises(self, gate, store):
        store.available = False
        with pytest.raises(StoreUnavailableError):
            await gate.get_recommendations("user-1", "PRO")
