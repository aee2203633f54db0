"""Provider-agnostic geocoding/forecast interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import City, DailyWeather


class WeatherDataProvider(ABC):
    """Base contract for data providers used by the query orchestrator."""

    @abstractmethod
    def search_cities(self, query: str, effective_limit: int) -> list[City]:
        """Return up to ``effective_limit`` city matches for ``query``."""

    @abstractmethod
    def get_weather_forecast(
        self, latitude: float, longitude: float, days: int
    ) -> list[DailyWeather]:
        """Return ``days`` daily forecasts in chronological order."""

    @abstractmethod
    def close(self) -> None:
        """Release provider resources."""
