"""Request cost estimation used to reject overly expensive queries."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

CITY_FIELDS = ("id", "name", "latitude", "longitude", "country", "population")
FORECAST_FIELDS = (
    "date",
    "temperatureMax",
    "temperatureMin",
    "precipitationSum",
    "windSpeedMax",
)
ACTIVITY_FIELDS = ("type", "rank", "suitabilityScore")
ACTIVITY_COUNT = 4

OPERATIONS = ("citySuggestions", "weatherForecast", "activityRanking")


def _list_cost(size: Any, fields: Iterable[str]) -> int:
    # Negative sizes never lower the cost.
    return max(0, int(size or 0)) * len(tuple(fields))


def estimate_complexity(
    operation: str,
    variables: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> int:
    """Estimate the cost of one query.

    Each selected field costs 1 per returned item and the root field costs 1.
    List results are weighted by their requested size: ``limit`` for city
    suggestions and ``forecastDays`` for forecasts. A ranking is always four
    activities, but it also reads ``forecastDays`` days of forecast.
    """
    if operation == "citySuggestions":
        selected = CITY_FIELDS if fields is None else tuple(fields)
        return 1 + _list_cost(variables.get("limit"), selected)
    if operation == "weatherForecast":
        selected = FORECAST_FIELDS if fields is None else tuple(fields)
        return 1 + _list_cost(variables.get("forecastDays"), selected)
    if operation == "activityRanking":
        selected = ACTIVITY_FIELDS if fields is None else tuple(fields)
        return (
            1
            + _list_cost(variables.get("forecastDays"), FORECAST_FIELDS)
            + _list_cost(ACTIVITY_COUNT, selected)
        )
    raise ValueError(
        f"Unknown operation {operation!r}; expected one of: {', '.join(OPERATIONS)}"
    )
