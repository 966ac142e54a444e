import pytest
from pydantic import ValidationError

from capacity_gate.core.config import Settings
from capacity_gate.services.compute_control import InMemoryComputeControl
from capacity_gate.services.metrics_client import InMemoryMetricsClient
from capacity_gate.services.providers import build_admission_gate, build_scaling_controller
from capacity_gate.services.store import InMemoryStore


def test_defaults():
    config = Settings(_env_file=None)
    assert (config.MIN_CAPACITY, config.MAX_CAPACITY) == (0, 10)
    assert config.service_id == "ai-agent-cluster/ai-agent-backend"
    assert config.ADMISSION_FAIL_OPEN is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"MIN_CAPACITY": 5, "MAX_CAPACITY": 2},
        {"MIN_CAPACITY": -1},
        {"MAX_CAPACITY": 0},
        {"CPU_LOW_THRESHOLD": 80.0, "CPU_HIGH_THRESHOLD": 70.0},
        {"BACKEND_MODE": "gcp"},
    ],
)
def test_invalid_settings_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MIN_CAPACITY", "1")
    monkeypatch.setenv("SCALE_UP_REQUESTS_PER_MINUTE", "25")
    monkeypatch.setenv("BACKEND_MODE", "MEMORY")
    config = Settings(_env_file=None)
    assert config.MIN_CAPACITY == 1
    assert config.SCALE_UP_REQUESTS_PER_MINUTE == 25.0
    assert config.BACKEND_MODE == "memory"


def test_memory_mode_builders():
    config = Settings(_env_file=None, BACKEND_MODE="memory", MIN_CAPACITY=1, CPU_HIGH_THRESHOLD=60.0)
    controller = build_scaling_controller(config)
    assert isinstance(controller.metrics, InMemoryMetricsClient)
    assert isinstance(controller.compute, InMemoryComputeControl)
    assert controller.metrics.cpu_high_threshold == 60.0
    assert controller.engine.bounds.min_capacity == 1
    assert controller.compute.desired_counts == {config.service_id: 1}


def test_admission_gate_from_tier_file(tmp_path):
    path = tmp_path / "tiers.yaml"
    path.write_text(
        "tiers:\n"
        "  FREE:\n"
        "    daily_request_limit: 3\n"
        "    monthly_request_limit: 30\n"
        "    cache_ttl_seconds: 60\n"
        "    rate_limit: {max_requests: 5}\n"
    )
    config = Settings(_env_file=None, TIER_CONFIG_FILE=str(path), ADMISSION_FAIL_OPEN=False)

    gate = build_admission_gate(config, store=InMemoryStore())

    assert gate.fail_open is False
    assert gate.tiers.resolve("PRO").daily_request_limit == 3
