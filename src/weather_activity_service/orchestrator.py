"""Query orchestration: complexity gating, pagination and error mapping."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from .complexity import estimate_complexity
from .config import Settings
from .exceptions import ErrorCode, FetchError, QueryError
from .models import ActivityScore, City, DailyWeather
from .provider.base import WeatherDataProvider
from .ranking import rank_activities

ComplexityEstimator = Callable[[str, Mapping[str, Any]], int]
Ranker = Callable[[Sequence[DailyWeather]], list[ActivityScore]]

CITY_SEARCH = "City search"
WEATHER_FORECAST = "Weather forecast"
ACTIVITY_RANKING = "Activity ranking"


class QueryOrchestrator:
    """Entry point for the three read-only queries exposed to callers.

    Every query is checked against the complexity limit before the provider
    is touched. Provider and scoring failures are translated here, and only
    here, into ``QueryError`` with a stable code and a message of the form
    ``"<operation> failed: <reason>"``.
    """

    def __init__(
        self,
        provider: WeatherDataProvider,
        logger: logging.Logger,
        *,
        max_complexity: int = 1000,
        complexity_estimator: ComplexityEstimator = estimate_complexity,
        ranker: Ranker = rank_activities,
        default_city_limit: int = 10,
        default_forecast_days: int = 7,
    ) -> None:
        self.provider = provider
        self.logger = logger
        self.max_complexity = max_complexity
        self._estimate = complexity_estimator
        self._rank = ranker
        self.default_city_limit = default_city_limit
        self.default_forecast_days = default_forecast_days

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: WeatherDataProvider,
        logger: logging.Logger,
    ) -> QueryOrchestrator:
        return cls(
            provider,
            logger,
            max_complexity=settings.query_max_complexity,
            default_city_limit=settings.default_city_limit,
            default_forecast_days=settings.default_forecast_days,
        )

    def city_suggestions(
        self,
        query: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[City]:
        """Return the ``[offset, offset + limit)`` window of matching cities."""
        limit = self.default_city_limit if limit is None else limit
        self._check_complexity(
            "citySuggestions", {"query": query, "limit": limit, "offset": offset}
        )
        # Slicing below clamps to the available length.
        limit = max(0, limit)
        offset = max(0, offset)

        try:
            cities = self.provider.search_cities(query, limit + offset)
        except FetchError as exc:
            raise self._failure(ErrorCode.SEARCH_FAILED, CITY_SEARCH, str(exc)) from exc

        if not cities:
            raise self._failure(
                ErrorCode.NOT_FOUND, CITY_SEARCH, "No cities found for the given query"
            )

        page = cities[offset : offset + limit]
        self.logger.info(
            "City suggestions query=%r limit=%d offset=%d upstream=%d returned=%d",
            query, limit, offset, len(cities), len(page),
        )
        return page

    def weather_forecast(
        self,
        latitude: float,
        longitude: float,
        days: int | None = None,
    ) -> list[DailyWeather]:
        """Return the daily forecast for a location."""
        days = self.default_forecast_days if days is None else days
        self._check_complexity(
            "weatherForecast",
            {"cityLatitude": latitude, "cityLongitude": longitude, "forecastDays": days},
        )

        try:
            forecast = self.provider.get_weather_forecast(latitude, longitude, days)
        except FetchError as exc:
            raise self._failure(
                ErrorCode.FORECAST_FAILED, WEATHER_FORECAST, str(exc)
            ) from exc

        if not forecast:
            raise self._failure(
                ErrorCode.NO_FORECAST, WEATHER_FORECAST, "No weather forecast available"
            )

        self.logger.info(
            "Weather forecast lat=%s lon=%s days=%d returned=%d",
            latitude, longitude, days, len(forecast),
        )
        return forecast

    def activity_ranking(
        self,
        latitude: float,
        longitude: float,
        days: int | None = None,
    ) -> list[ActivityScore]:
        """Rank activities for a location from its daily forecast."""
        days = self.default_forecast_days if days is None else days
        self._check_complexity(
            "activityRanking",
            {"cityLatitude": latitude, "cityLongitude": longitude, "forecastDays": days},
        )

        try:
            forecast = self.provider.get_weather_forecast(latitude, longitude, days)
        except FetchError as exc:
            raise self._failure(
                ErrorCode.RANKING_FAILED, ACTIVITY_RANKING, str(exc)
            ) from exc

        if not forecast:
            raise self._failure(
                ErrorCode.NO_FORECAST,
                ACTIVITY_RANKING,
                "No weather forecast available for ranking",
            )

        try:
            ranking = self._rank(forecast)
        except Exception as exc:
            raise self._failure(
                ErrorCode.RANKING_FAILED, ACTIVITY_RANKING, str(exc) or type(exc).__name__
            ) from exc

        self.logger.info(
            "Activity ranking lat=%s lon=%s days=%d top=%s",
            latitude, longitude, days, ranking[0].type.value if ranking else "-",
        )
        return ranking

    def _check_complexity(self, operation: str, variables: Mapping[str, Any]) -> None:
        complexity = self._estimate(operation, variables)
        if complexity > self.max_complexity:
            self.logger.warning(
                "Rejected %s: complexity %d exceeds limit %d",
                operation, complexity, self.max_complexity,
            )
            raise QueryError(
                ErrorCode.COMPLEXITY_EXCEEDED,
                f"Query too complex: {complexity} exceeds limit of {self.max_complexity}",
            )

    def _failure(self, code: ErrorCode, operation: str, reason: str) -> QueryError:
        message = f"{operation} failed: {reason}"
        self.logger.warning("Query failure code=%s: %s", code.value, message)
        return QueryError(code, message)
