"""Rule-table ranking of tourist activities from daily forecasts."""

from __future__ import annotations

from collections.abc import Sequence
from statistics import fmean

from .models import ActivityScore, ActivityType, DailyWeather


def _average(values: list[float]) -> float:
    # Empty forecasts aggregate to 0 rather than NaN.
    return fmean(values) if values else 0.0


def rank_activities(forecasts: Sequence[DailyWeather]) -> list[ActivityScore]:
    """Score each activity against averaged conditions and rank best first.

    Aggregates are the mean of daily (max + min) / 2 temperature, the mean
    precipitation sum and the mean max wind speed. Scores come from a fixed
    rule table; equal scores keep the table's declaration order.
    """
    avg_temp = _average([(f.temperature_max + f.temperature_min) / 2 for f in forecasts])
    avg_precip = _average([f.precipitation_sum for f in forecasts])
    avg_wind = _average([f.wind_speed_max for f in forecasts])

    scores: list[tuple[ActivityType, float]] = [
        (
            ActivityType.SKIING,
            0.9 if avg_temp < 5 and avg_precip > 0 else 0.1,
        ),
        (
            ActivityType.SURFING,
            0.7 if avg_temp > 20 and 15 <= avg_wind <= 30 else 0.2,
        ),
        (
            ActivityType.INDOOR_SIGHTSEEING,
            0.8 if avg_precip > 2 else 0.3,
        ),
        (
            ActivityType.OUTDOOR_SIGHTSEEING,
            0.9 if 15 <= avg_temp <= 30 and avg_precip < 2 else 0.2,
        ),
    ]

    # sorted() is stable, so ties keep declaration order.
    ranked = sorted(scores, key=lambda item: item[1], reverse=True)
    return [
        ActivityScore(type=activity, rank=index + 1, suitability_score=score)
        for index, (activity, score) in enumerate(ranked)
    ]
