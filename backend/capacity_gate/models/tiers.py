"""Subscription tier table.

Loaded once at process start and injected into the admission gate. Lookups
never fail: an unknown tier resolves to the most restrictive configuration.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from capacity_gate.core.exceptions import InvalidTierError
from capacity_gate.core.logger import get_logger

logger = get_logger(__name__)


class Tier(str, Enum):
    """Subscription tiers"""
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


FALLBACK_TIER = Tier.FREE.value


@dataclass(frozen=True)
class RateLimitConfig:
    """Short-window request cap"""
    max_requests: int
    window_ms: int = 60000

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0


@dataclass(frozen=True)
class TierConfig:
    """Limits for one subscription tier"""
    name: str
    daily_request_limit: int
    monthly_request_limit: int
    cache_ttl_seconds: int
    rate_limit: RateLimitConfig
    cache_enabled: bool = True

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> TierConfig:
        try:
            rate = data.get("rate_limit") or {}
            config = cls(
                name=name,
                daily_request_limit=int(data["daily_request_limit"]),
                monthly_request_limit=int(data["monthly_request_limit"]),
                cache_ttl_seconds=int(data["cache_ttl_seconds"]),
                rate_limit=RateLimitConfig(
                    max_requests=int(rate["max_requests"]),
                    window_ms=int(rate.get("window_ms", 60000)),
                ),
                cache_enabled=bool(data.get("cache_enabled", True)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTierError(f"Invalid configuration for tier {name}: {e}") from e

        if min(config.daily_request_limit, config.monthly_request_limit, config.cache_ttl_seconds) < 0:
            raise InvalidTierError(f"Negative limit in tier {name}")
        if config.rate_limit.max_requests < 0 or config.rate_limit.window_ms <= 0:
            raise InvalidTierError(f"Invalid rate limit in tier {name}")
        return config


DEFAULT_TIERS: Dict[str, TierConfig] = {
    Tier.FREE.value: TierConfig(
        name=Tier.FREE.value,
        daily_request_limit=10,
        monthly_request_limit=100,
        cache_ttl_seconds=3600,     # 1 hour
        rate_limit=RateLimitConfig(max_requests=1, window_ms=60000),
    ),
    Tier.BASIC.value: TierConfig(
        name=Tier.BASIC.value,
        daily_request_limit=100,
        monthly_request_limit=2000,
        cache_ttl_seconds=1800,     # 30 minutes
        rate_limit=RateLimitConfig(max_requests=10, window_ms=60000),
    ),
    Tier.PRO.value: TierConfig(
        name=Tier.PRO.value,
        daily_request_limit=500,
        monthly_request_limit=10000,
        cache_ttl_seconds=900,      # 15 minutes
        rate_limit=RateLimitConfig(max_requests=50, window_ms=60000),
    ),
    Tier.ENTERPRISE.value: TierConfig(
        name=Tier.ENTERPRISE.value,
        daily_request_limit=2000,
        monthly_request_limit=50000,
        cache_ttl_seconds=300,      # 5 minutes
        rate_limit=RateLimitConfig(max_requests=200, window_ms=60000),
    ),
}


class TierTable:
    """Read-only mapping from tier identifier to TierConfig"""

    def __init__(self, tiers: Optional[Mapping[str, TierConfig]] = None, fallback: str = FALLBACK_TIER):
        self._tiers: Dict[str, TierConfig] = {
            name.upper(): config for name, config in (tiers or DEFAULT_TIERS).items()
        }
        self.fallback = fallback.upper()
        if self.fallback not in self._tiers:
            raise InvalidTierError(f"Fallback tier {self.fallback} is not defined")

    def names(self):
        return list(self._tiers)

    def resolve(self, tier: Optional[str]) -> TierConfig:
        """Return the config for ``tier``, falling back to the most restrictive one"""
        key = (tier or "").strip().upper()
        config = self._tiers.get(key)
        if config is None:
            logger.warning(f"Unknown tier {tier!r}, falling back to {self.fallback}")
            return self._tiers[self.fallback]
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> TierTable:
        """Load a tier table from YAML; the file must define the fallback tier"""
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise InvalidTierError(f"Tier file {path} must contain a mapping")
        tiers = raw.get("tiers", raw)
        if not isinstance(tiers, dict) or not tiers:
            raise InvalidTierError(f"Tier file {path} defines no tiers")

        table = cls({name.upper(): TierConfig.from_dict(name.upper(), data) for name, data in tiers.items()})
        logger.info(f"Loaded {len(table.names())} tiers from {path}")
        return table
