"""Cost optimization hints derived from a user's usage.

Rules, each independent:
- monthly spend above ``HIGH_MONTHLY_COST``: suggest a higher tier (20% savings)
- result cache hit rate below ``LOW_CACHE_HIT_RATE``: suggest caching (60%)
- more than ``BATCHING_DAILY_REQUESTS`` requests today: suggest batching (30%)

Savings are fractions of the current monthly cost.
"""
from __future__ import annotations

from typing import List, Optional

from capacity_gate.models.admission import (
    Recommendation,
    RecommendationPriority,
    RecommendationType,
    UsageSnapshot,
)

HIGH_MONTHLY_COST = 50.0
LOW_CACHE_HIT_RATE = 0.5
BATCHING_DAILY_REQUESTS = 20


def cache_hit_rate(hits: int, misses: int) -> Optional[float]:
    """None until at least one lookup happened"""
    total = hits + misses
    return hits / total if total else None


def recommend(usage: UsageSnapshot, hit_rate: Optional[float] = None) -> List[Recommendation]:
    monthly_cost = usage.monthly_cost
    recommendations = []

    if monthly_cost > HIGH_MONTHLY_COST:
        recommendations.append(Recommendation(
            type=RecommendationType.COST_REDUCTION,
            priority=RecommendationPriority.HIGH,
            message="Consider upgrading to a higher tier for better cost efficiency",
            potential_savings=round(monthly_cost * 0.2, 2),
        ))

    if hit_rate is not None and hit_rate < LOW_CACHE_HIT_RATE:
        recommendations.append(Recommendation(
            type=RecommendationType.CACHE_OPTIMIZATION,
            priority=RecommendationPriority.MEDIUM,
            message="Enable caching to reduce API costs by up to 60%",
            potential_savings=round(monthly_cost * 0.6, 2),
        ))

    if usage.daily_count > BATCHING_DAILY_REQUESTS:
        recommendations.append(Recommendation(
            type=RecommendationType.BATCH_PROCESSING,
            priority=RecommendationPriority.MEDIUM,
            message="Use batch processing for multiple requests to reduce costs",
            potential_savings=round(monthly_cost * 0.3, 2),
        ))

    return recommendations
