"""Open-Meteo geocoding and forecast client with caching and 429 retry."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..cache import TTLCache
from ..config import Settings
from ..exceptions import FetchError
from ..models import City, DailyWeather
from ..redaction import sanitize_text
from .base import WeatherDataProvider
from .retry import REQUEST_ERRORS, RateLimitRetry

DAILY_FIELDS = (
    "temperature_2m_max",
    "temperature_2m_min",
    "precipitation_sum",
    "wind_speed_10m_max",
)


class OpenMeteoClient(WeatherDataProvider):
    """Fetches city matches and daily forecasts from Open-Meteo.

    Results are cached in the injected ``TTLCache`` (one shared key space for
    both operations). Forecast requests answered with HTTP 429 are retried by
    ``RateLimitRetry``; every other failure surfaces immediately as
    ``FetchError``.
    """

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger,
        cache: TTLCache | None = None,
        retry: RateLimitRetry | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.logger = logger
        if cache is None:
            cache = TTLCache(
                max_entries=settings.cache_max_entries,
                ttl_seconds=settings.cache_ttl_seconds,
            )
        self.cache = cache
        self.retry = retry or RateLimitRetry(
            max_attempts=settings.rate_limit_max_attempts,
            delay_seconds=settings.rate_limit_retry_delay_seconds,
            deadline_seconds=settings.retry_deadline_seconds,
            logger=logger,
        )
        headers = {
            "Accept": "application/json",
            "User-Agent": settings.provider_user_agent,
        }
        self._geocoding = httpx.Client(
            base_url=str(settings.open_meteo_geocoding_url),
            timeout=settings.provider_timeout_seconds,
            headers=headers,
            transport=transport,
        )
        self._forecast = httpx.Client(
            base_url=str(settings.open_meteo_forecast_url),
            timeout=settings.provider_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def __enter__(self) -> OpenMeteoClient:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close underlying HTTP clients."""
        self._geocoding.close()
        self._forecast.close()

    @staticmethod
    def city_cache_key(query: str, effective_limit: int) -> str:
        return f"city:{query}:{effective_limit}"

    @staticmethod
    def forecast_cache_key(latitude: float, longitude: float, days: int) -> str:
        return f"forecast:{float(latitude)!r}:{float(longitude)!r}:{days}"

    def search_cities(self, query: str, effective_limit: int) -> list[City]:
        key = self.city_cache_key(query, effective_limit)
        cached = self._cache_get(key)
        if cached is not None:
            self.logger.debug("City search cache hit key=%s", key)
            return list(cached)

        params = {"name": query, "count": effective_limit, "language": "en"}
        try:
            payload = self._request_json(
                self._geocoding, "/search", params, retry_rate_limit=False
            )
            cities = self._normalize_cities(payload)
        except FetchError as exc:
            self.logger.warning("City search failed query=%r: %s", query, exc)
            raise FetchError(
                f"Failed to fetch cities: {exc}", status_code=exc.status_code
            ) from exc

        self._cache_set(key, cities)
        self.logger.info("City search fetched query=%r results=%d", query, len(cities))
        return list(cities)

    def get_weather_forecast(
        self, latitude: float, longitude: float, days: int
    ) -> list[DailyWeather]:
        key = self.forecast_cache_key(latitude, longitude, days)
        cached = self._cache_get(key)
        if cached is not None:
            self.logger.debug("Forecast cache hit key=%s", key)
            return list(cached)

        params = {
            "latitude": latitude,
            "longitude": longitude,
            "daily": ",".join(DAILY_FIELDS),
            "timezone": "auto",
            "forecast_days": days,
        }
        try:
            payload = self._request_json(
                self._forecast, "/forecast", params, retry_rate_limit=True
            )
            forecast = self._normalize_forecast(payload)
        except FetchError as exc:
            self.logger.warning(
                "Forecast fetch failed lat=%s lon=%s days=%d: %s",
                latitude, longitude, days, exc,
            )
            raise FetchError(
                f"Failed to fetch weather forecast: {exc}", status_code=exc.status_code
            ) from exc

        self._cache_set(key, forecast)
        self.logger.info(
            "Forecast fetched lat=%s lon=%s days=%d entries=%d",
            latitude, longitude, days, len(forecast),
        )
        return list(forecast)

    def _request_json(
        self,
        client: httpx.Client,
        path: str,
        params: dict[str, Any],
        *,
        retry_rate_limit: bool,
    ) -> dict[str, Any]:
        request_params = dict(params)
        if self.settings.open_meteo_api_key:
            request_params["apikey"] = self.settings.open_meteo_api_key

        self.logger.debug(
            "Provider request",
            extra={"path": path, "params": request_params},
        )

        def _send() -> httpx.Response:
            return client.get(path, params=request_params)

        if retry_rate_limit:
            outcome = self.retry.run(_send)
            if outcome.error is not None:
                raise self._transport_failure(outcome.error) from outcome.error
            if outcome.deadline_exceeded:
                raise FetchError(
                    "Rate limit retry deadline exceeded after "
                    f"{outcome.attempts} attempt(s)",
                    status_code=429,
                )
            response = outcome.response
            if response is None:
                raise FetchError("No response received from provider.")
        else:
            try:
                response = _send()
            except REQUEST_ERRORS as exc:
                raise self._transport_failure(exc) from exc

        if not response.is_success:
            raise FetchError(
                self._status_failure_reason(response),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(
                "Response was not valid JSON.", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise FetchError(
                f"Unexpected payload type {type(payload).__name__}.",
                status_code=response.status_code,
            )
        return payload

    @staticmethod
    def _transport_failure(exc: Exception) -> FetchError:
        detail = str(exc).strip() or type(exc).__name__
        if isinstance(exc, httpx.TimeoutException):
            detail = f"Request timed out: {detail}"
        return FetchError(sanitize_text(detail))

    @staticmethod
    def _status_failure_reason(response: httpx.Response) -> str:
        reason: str | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            raw_reason = body.get("reason") or body.get("error")
            if isinstance(raw_reason, str) and raw_reason.strip():
                reason = raw_reason.strip()
        message = f"Request failed with status code {response.status_code}"
        if reason:
            message = f"{message} ({sanitize_text(reason[:300])})"
        return message

    @staticmethod
    def _normalize_cities(payload: dict[str, Any]) -> list[City]:
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise FetchError("Geocoding payload 'results' is not a list.")
        cities: list[City] = []
        for record in results:
            if not isinstance(record, dict):
                raise FetchError("Geocoding result entry is not an object.")
            try:
                cities.append(
                    City(
                        id=str(record["id"]),
                        name=record["name"],
                        latitude=record["latitude"],
                        longitude=record["longitude"],
                        country=record.get("country"),
                        population=record.get("population"),
                    )
                )
            except (KeyError, ValidationError) as exc:
                raise FetchError(f"Malformed geocoding result: {exc}") from exc
        return cities

    @staticmethod
    def _normalize_forecast(payload: dict[str, Any]) -> list[DailyWeather]:
        daily = payload.get("daily") or {}
        if not isinstance(daily, dict):
            raise FetchError("Forecast payload 'daily' is not an object.")
        times = daily.get("time") or []
        if not isinstance(times, list):
            raise FetchError("Forecast payload field 'time' is not a list.")
        columns = {name: daily.get(name) or [] for name in DAILY_FIELDS}
        for name, values in columns.items():
            if not isinstance(values, list) or len(values) != len(times):
                raise FetchError(
                    f"Forecast payload field '{name}' is not aligned with 'time'."
                )

        forecast: list[DailyWeather] = []
        for index, day in enumerate(times):
            try:
                forecast.append(
                    DailyWeather(
                        date=day,
                        temperature_max=columns["temperature_2m_max"][index],
                        temperature_min=columns["temperature_2m_min"][index],
                        precipitation_sum=columns["precipitation_sum"][index],
                        wind_speed_max=columns["wind_speed_10m_max"][index],
                    )
                )
            except ValidationError as exc:
                raise FetchError(f"Malformed forecast day at index {index}: {exc}") from exc
        return forecast

    def _cache_get(self, key: str) -> list[Any] | None:
        try:
            return self.cache.get(key)
        except Exception as exc:  # best-effort, fall through to a live fetch
            self.logger.warning("Cache read failed key=%s: %s", key, exc)
            return None

    def _cache_set(self, key: str, value: list[Any]) -> None:
        try:
            self.cache.set(key, value)
        except Exception as exc:  # best-effort
            self.logger.warning("Cache write failed key=%s: %s", key, exc)
