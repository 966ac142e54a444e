from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AdmissionReason(str, Enum):
    """Why a request was or was not admitted"""
    ALLOWED = "ALLOWED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


@dataclass(frozen=True)
class AdmissionResult:
    allowed: bool
    reason: AdmissionReason
    tier: str
    remaining_daily: Optional[int] = None
    remaining_monthly: Optional[int] = None
    retry_after: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "tier": self.tier,
            "remaining_daily": self.remaining_daily,
            "remaining_monthly": self.remaining_monthly,
            "retry_after": self.retry_after,
        }


@dataclass(frozen=True)
class UsageRecord:
    """Request, token and cost totals for one user and one day or month bucket"""
    user_id: str
    tier: str
    period_key: str
    count: int
    tokens: int = 0
    cost: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class UsageSnapshot:
    """Daily and monthly usage for a user in their tier"""
    user_id: str
    tier: str
    daily_count: int
    monthly_count: int
    daily_limit: int
    monthly_limit: int
    daily_tokens: int = 0
    monthly_tokens: int = 0
    daily_cost: float = 0.0
    monthly_cost: float = 0.0

    @property
    def remaining_daily(self) -> int:
        return max(0, self.daily_limit - self.daily_count)

    @property
    def remaining_monthly(self) -> int:
        return max(0, self.monthly_limit - self.monthly_count)

    @property
    def daily_limit_exceeded(self) -> bool:
        return self.daily_count >= self.daily_limit

    @property
    def monthly_limit_exceeded(self) -> bool:
        return self.monthly_count >= self.monthly_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "tier": self.tier,
            "daily": self.daily_count,
            "monthly": self.monthly_count,
            "daily_tokens": self.daily_tokens,
            "monthly_tokens": self.monthly_tokens,
            "daily_cost": round(self.daily_cost, 6),
            "monthly_cost": round(self.monthly_cost, 6),
            "daily_limit": self.daily_limit,
            "monthly_limit": self.monthly_limit,
            "remaining_daily": self.remaining_daily,
            "remaining_monthly": self.remaining_monthly,
            "daily_limit_exceeded": self.daily_limit_exceeded,
            "monthly_limit_exceeded": self.monthly_limit_exceeded,
        }


@dataclass(frozen=True)
class CacheEntry:
    """Cached response for one request fingerprint"""
    fingerprint: str
    payload: Any
    tier: str
    expires_at: datetime


@dataclass
class ProcessingResult:
    """Outcome of a gated content-processing request"""
    admission: AdmissionResult
    payload: Any = None
    cached: bool = False
    usage: Optional[UsageSnapshot] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.admission.allowed


@dataclass(frozen=True)
class BackendResult:
    """Handler return value that also reports what the call consumed"""
    payload: Any
    tokens: int = 0
    cost: float = 0.0


class RecommendationType(str, Enum):
    COST_REDUCTION = "COST_REDUCTION"
    CACHE_OPTIMIZATION = "CACHE_OPTIMIZATION"
    BATCH_PROCESSING = "BATCH_PROCESSING"


class RecommendationPriority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


@dataclass(frozen=True)
class Recommendation:
    type: RecommendationType
    priority: RecommendationPriority
    message: str
    potential_savings: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "priority": self.priority.value,
            "message": self.message,
            "potential_savings": self.potential_savings,
        }
