import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Keep test runs off AWS/Redis and out of the working directory
os.environ.setdefault("BACKEND_MODE", "memory")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="capacity-gate-logs-"))
os.environ.setdefault("SCALING_LOOP_ENABLED", "false")

from capacity_gate.models.scaling import CpuWindow, TrafficWindow  # noqa: E402
from capacity_gate.models.tiers import TierTable  # noqa: E402
from capacity_gate.services.admission_gate import AdmissionGate  # noqa: E402
from capacity_gate.services.rate_limiter import TierRateLimiter  # noqa: E402
from capacity_gate.services.result_cache import ResultCache  # noqa: E402
from capacity_gate.services.store import InMemoryStore  # noqa: E402
from capacity_gate.services.usage_ledger import UsageLedger  # noqa: E402


class FakeClock:
    """Shared wall clock for the store (epoch seconds) and the ledger/cache (datetimes)"""

    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def traffic(total: int = 0, per_minute: float = None, samples: int = 3) -> TrafficWindow:
    if per_minute is None:
        per_minute = total / (samples * 5) if samples else 0.0
    return TrafficWindow(total_requests=total, avg_requests_per_minute=per_minute, sample_count=samples)


def cpu(percent: float, samples: int = 3) -> CpuWindow:
    return CpuWindow(avg_utilization_percent=percent, sample_count=samples)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return InMemoryStore(clock=clock.time)


@pytest.fixture
def ledger(store, clock):
    return UsageLedger(store, clock=clock.now)


@pytest.fixture
def result_cache(store, clock):
    return ResultCache(store, clock=clock.now)


@pytest.fixture
def rate_limiter(store, clock):
    return TierRateLimiter(store, clock=clock.time)


@pytest.fixture
def tiers():
    return TierTable()


@pytest.fixture
def gate(ledger, result_cache, rate_limiter, tiers):
    return AdmissionGate(ledger, result_cache, rate_limiter, tiers, fail_open=True)
