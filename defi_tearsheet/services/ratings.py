"""
Raw rating scores per protocol and their conversion into quintile ranks.

Raw scores are continuous (higher = better) and depend only on one protocol's
metrics. Ranks are relative: they need every raw score of the universe first.
"""
import math
from typing import Dict, List, Optional

from defi_tearsheet.schemas.protocol import ProtocolMetrics, ProtocolRatings, RatingRawScores

NEUTRAL_SCORE = 0.5

def normalize_score(value: Optional[float], low: float, high: float) -> float:
    """Clamp into [low, high] and rescale to [0, 1]; missing values are neutral."""
    if value is None:
        return NEUTRAL_SCORE
    clamped = max(low, min(high, value))
    return (clamped - low) / (high - low)

def log_scale_score(value: Optional[float], low: float, high: float) -> float:
    """normalize_score on log10(value); zero rather than neutral when value is missing or non-positive."""
    if value is None or value <= 0:
        return 0.0
    return normalize_score(math.log10(value), low, high)

def rsi_signal(change: float) -> float:
    # Oversold gets a mild bonus, healthy uptrend scores best, overbought is penalised
    if change < -50:
        return 0.6
    if change < -20:
        return 0.5
    if change < 0:
        return 0.4
    if change < 30:
        return 0.7
    if change < 60:
        return 0.5
    return 0.3

def timeliness_score(metrics: ProtocolMetrics) -> float:
    distance = metrics.distance_from_ath if metrics.distance_from_ath is not None else -100
    return (
        0.30 * normalize_score(metrics.price_change_90d, -50, 100)
        + 0.30 * normalize_score(metrics.tvl_change_90d, -50, 100)
        + 0.25 * normalize_score(metrics.revenue_change_90d, -50, 200)
        + 0.15 * normalize_score(distance, -95, 0)
    )

def safety_score(metrics: ProtocolMetrics) -> float:
    tvl_stability = (
        normalize_score(-abs(metrics.tvl_change_90d), -100, 0)
        if metrics.tvl_change_90d is not None
        else NEUTRAL_SCORE
    )
    # Age proxy: having TVL data at all
    age_proxy = 0.7 if metrics.tvl is not None else 0.3
    return (
        0.25 * log_scale_score(metrics.tvl, 6, 11)
        + 0.25 * tvl_stability
        + 0.20 * age_proxy
        + 0.20 * log_scale_score(metrics.annualized_revenue, 4, 10)
        + 0.10 * log_scale_score(metrics.market_cap, 6, 11)
    )

def technical_score(metrics: ProtocolMetrics) -> float:
    change = metrics.price_change_90d
    distance = metrics.distance_from_ath if metrics.distance_from_ath is not None else -50
    volatility = normalize_score(-abs(change), -100, 0) if change is not None else NEUTRAL_SCORE
    rsi = rsi_signal(change) if change is not None else NEUTRAL_SCORE
    return (
        0.30 * normalize_score(change, -60, 60)
        + 0.30 * normalize_score(distance, -90, 0)
        + 0.20 * volatility
        + 0.20 * rsi
    )

def compute_raw_scores(slug: str, metrics: ProtocolMetrics) -> RatingRawScores:
    return RatingRawScores(
        slug=slug,
        timeliness_score=timeliness_score(metrics),
        safety_score=safety_score(metrics),
        technical_score=technical_score(metrics),
    )

def percentile_to_rank(percentile: float) -> int:
    if percentile < 0.2:
        return 1
    if percentile < 0.4:
        return 2
    if percentile < 0.6:
        return 3
    if percentile < 0.8:
        return 4
    return 5

def quintile_rank(scores: List[RatingRawScores], field: str) -> Dict[str, int]:
    """slug -> rank for one dimension; highest score ranks 1, ties keep input order."""
    # sorted(reverse=True) is stable for equal keys
    ordered = sorted(scores, key=lambda s: getattr(s, field), reverse=True)
    n = len(ordered)
    return {score.slug: percentile_to_rank(index / n) for index, score in enumerate(ordered)}

def assign_quintile_ratings(raw_scores: List[RatingRawScores]) -> Dict[str, ProtocolRatings]:
    if not raw_scores:
        return {}

    timeliness = quintile_rank(raw_scores, "timeliness_score")
    safety = quintile_rank(raw_scores, "safety_score")
    technical = quintile_rank(raw_scores, "technical_score")

    return {
        score.slug: ProtocolRatings(
            timeliness=timeliness[score.slug],
            safety=safety[score.slug],
            technical=technical[score.slug],
        )
        for score in raw_scores
    }
