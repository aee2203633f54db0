"""Open-Meteo client tests: request shape, caching, retry and failure text."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from weather_activity_service.cache import TTLCache
from weather_activity_service.exceptions import ErrorCode, FetchError, QueryError
from weather_activity_service.log_setup import setup_logger
from weather_activity_service.models import City, DailyWeather
from weather_activity_service.orchestrator import QueryOrchestrator
from weather_activity_service.provider.open_meteo import DAILY_FIELDS, OpenMeteoClient
from weather_activity_service.provider.retry import RateLimitRetry

PARIS_RESULTS = {
    "results": [
        {
            "id": 2988507,
            "name": "Paris",
            "latitude": 48.85341,
            "longitude": 2.3488,
            "country": "France",
            "population": 2138551,
        },
        {
            "id": 4717560,
            "name": "Paris",
            "latitude": 33.66094,
            "longitude": -95.55551,
            "country": "United States",
        },
    ]
}

PARIS_DAILY = {
    "latitude": 48.86,
    "longitude": 2.34,
    "daily": {
        "time": ["2025-08-14", "2025-08-15"],
        "temperature_2m_max": [26.5, 28.1],
        "temperature_2m_min": [24.5, 17.0],
        "precipitation_sum": [0.0, 1.2],
        "wind_speed_10m_max": [14.5, 9.8],
    },
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _make_settings(**overrides: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "open_meteo_geocoding_url": "https://geocoding.test/v1",
        "open_meteo_forecast_url": "https://forecast.test/v1",
        "open_meteo_api_key": None,
        "provider_timeout_seconds": 5.0,
        "provider_user_agent": "weather-activity-tests/1.0",
        "cache_max_entries": 100,
        "cache_ttl_seconds": 3600.0,
        "rate_limit_max_attempts": 3,
        "rate_limit_retry_delay_seconds": 0.0,
        "retry_deadline_seconds": 30.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    settings: SimpleNamespace | None = None,
    cache: Any = None,
    retry: RateLimitRetry | None = None,
) -> OpenMeteoClient:
    return OpenMeteoClient(
        settings=settings or _make_settings(),
        logger=logging.getLogger("test.open_meteo"),
        cache=cache,
        retry=retry or RateLimitRetry(max_attempts=3, delay_seconds=0.0),
        transport=httpx.MockTransport(handler),
    )


def test_search_cities_sends_geocoding_request_and_maps_results() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PARIS_RESULTS)

    with _client(handler) as client:
        cities = client.search_cities("Paris", 2)

    assert len(seen) == 1
    request = seen[0]
    assert request.url.host == "geocoding.test"
    assert request.url.path == "/v1/search"
    assert request.url.params["name"] == "Paris"
    assert request.url.params["count"] == "2"
    assert request.url.params["language"] == "en"
    assert "apikey" not in request.url.params
    assert request.headers["User-Agent"] == "weather-activity-tests/1.0"

    assert cities == [
        City(
            id="2988507",
            name="Paris",
            latitude=48.85341,
            longitude=2.3488,
            country="France",
            population=2138551,
        ),
        City(
            id="4717560",
            name="Paris",
            latitude=33.66094,
            longitude=-95.55551,
            country="United States",
            population=None,
        ),
    ]


def test_search_cities_is_served_from_cache_on_repeat() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_RESULTS)

    cache = TTLCache(max_entries=10, ttl_seconds=3600, clock=FakeClock())
    with _client(handler, cache=cache) as client:
        first = client.search_cities("Paris", 2)
        second = client.search_cities("Paris", 2)

    assert calls["count"] == 1
    assert first == second
    assert "city:Paris:2" in cache


def test_search_cities_refetches_after_ttl_expiry() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_RESULTS)

    clock = FakeClock()
    cache = TTLCache(max_entries=10, ttl_seconds=3600, clock=clock)
    with _client(handler, cache=cache) as client:
        client.search_cities("Paris", 2)
        clock.now = 3599.0
        client.search_cities("Paris", 2)
        assert calls["count"] == 1
        clock.now = 3600.0
        client.search_cities("Paris", 2)

    assert calls["count"] == 2


def test_search_cities_cache_key_includes_limit() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_RESULTS)

    with _client(handler) as client:
        client.search_cities("Paris", 2)
        client.search_cities("Paris", 3)

    assert calls["count"] == 2


def test_search_cities_caches_empty_results() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        # Open-Meteo omits "results" entirely when nothing matches.
        return httpx.Response(200, json={"generationtime_ms": 0.4})

    cache = TTLCache(clock=FakeClock())
    with _client(handler, cache=cache) as client:
        assert client.search_cities("Nowhereville", 5) == []
        assert client.search_cities("Nowhereville", 5) == []

    assert calls["count"] == 1
    assert cache.get("city:Nowhereville:5") == []


def test_search_cities_network_error_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Network Error", request=request)

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.search_cities("Paris", 2)

    assert str(exc_info.value) == "Failed to fetch cities: Network Error"
    assert exc_info.value.status_code is None


def test_search_cities_does_not_retry_rate_limit() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(429, json={"error": True, "reason": "Too many requests"})

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.search_cities("Paris", 2)

    assert calls["count"] == 1
    assert exc_info.value.status_code == 429
    assert str(exc_info.value).startswith(
        "Failed to fetch cities: Request failed with status code 429"
    )


def test_failed_search_is_not_cached() -> None:
    responses = [
        httpx.Response(500, text="upstream down"),
        httpx.Response(200, json=PARIS_RESULTS),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    with _client(handler) as client:
        with pytest.raises(FetchError):
            client.search_cities("Paris", 2)
        assert len(client.search_cities("Paris", 2)) == 2


def test_get_weather_forecast_sends_daily_fields_and_zips_columns() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PARIS_DAILY)

    with _client(handler) as client:
        forecast = client.get_weather_forecast(48.85341, 2.3488, 2)

    request = seen[0]
    assert request.url.host == "forecast.test"
    assert request.url.path == "/v1/forecast"
    assert request.url.params["latitude"] == "48.85341"
    assert request.url.params["longitude"] == "2.3488"
    assert request.url.params["daily"] == ",".join(DAILY_FIELDS)
    assert request.url.params["timezone"] == "auto"
    assert request.url.params["forecast_days"] == "2"

    assert forecast == [
        DailyWeather(
            date="2025-08-14",
            temperature_max=26.5,
            temperature_min=24.5,
            precipitation_sum=0.0,
            wind_speed_max=14.5,
        ),
        DailyWeather(
            date="2025-08-15",
            temperature_max=28.1,
            temperature_min=17.0,
            precipitation_sum=1.2,
            wind_speed_max=9.8,
        ),
    ]


def test_forecast_cache_key_format() -> None:
    assert (
        OpenMeteoClient.forecast_cache_key(48.85341, 2.3488, 1)
        == "forecast:48.85341:2.3488:1"
    )
    assert OpenMeteoClient.city_cache_key("Paris", 2) == "city:Paris:2"


def test_get_weather_forecast_is_cached_per_location_and_days() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_DAILY)

    cache = TTLCache(clock=FakeClock())
    with _client(handler, cache=cache) as client:
        client.get_weather_forecast(48.85341, 2.3488, 2)
        client.get_weather_forecast(48.85341, 2.3488, 2)
        assert calls["count"] == 1
        client.get_weather_forecast(48.85341, 2.3488, 3)

    assert calls["count"] == 2
    assert "forecast:48.85341:2.3488:2" in cache


def test_get_weather_forecast_bad_request_message_includes_reason() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": True, "reason": "Latitude must be in range of -90 to 90°."},
        )

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(123.0, 2.0, 1)

    assert exc_info.value.status_code == 400
    assert str(exc_info.value) == (
        "Failed to fetch weather forecast: Request failed with status code 400 "
        "(Latitude must be in range of -90 to 90°.)"
    )


def test_get_weather_forecast_plain_error_status_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="bad")

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 1)

    assert str(exc_info.value) == (
        "Failed to fetch weather forecast: Request failed with status code 400"
    )


def test_get_weather_forecast_retries_rate_limit_until_success() -> None:
    responses = [
        httpx.Response(429, json={"error": True, "reason": "Too many requests"}),
        httpx.Response(429, json={"error": True, "reason": "Too many requests"}),
        httpx.Response(200, json=PARIS_DAILY),
    ]
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return responses.pop(0)

    sleeps: list[float] = []
    retry = RateLimitRetry(max_attempts=3, delay_seconds=1.0, sleep_fn=sleeps.append)
    with _client(handler, retry=retry) as client:
        forecast = client.get_weather_forecast(48.85341, 2.3488, 2)

    assert calls["count"] == 3
    assert sleeps == [1.0, 1.0]
    assert len(forecast) == 2


def test_get_weather_forecast_gives_up_after_max_attempts() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(429)

    retry = RateLimitRetry(max_attempts=3, delay_seconds=0.5, sleep_fn=lambda _: None)
    with _client(handler, retry=retry) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 2)

    assert calls["count"] == 3
    assert exc_info.value.status_code == 429
    assert str(exc_info.value) == (
        "Failed to fetch weather forecast: Request failed with status code 429"
    )


def test_get_weather_forecast_does_not_retry_server_error() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503)

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 2)

    assert calls["count"] == 1
    assert exc_info.value.status_code == 503


def test_get_weather_forecast_timeout_is_not_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ReadTimeout("read timed out", request=request)

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 2)

    assert calls["count"] == 1
    assert str(exc_info.value) == (
        "Failed to fetch weather forecast: Request timed out: read timed out"
    )


def test_get_weather_forecast_deadline_exceeded_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    retry = RateLimitRetry(
        max_attempts=5,
        delay_seconds=10.0,
        deadline_seconds=5.0,
        sleep_fn=lambda _: None,
        clock=lambda: 0.0,
    )
    with _client(handler, retry=retry) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 2)

    assert exc_info.value.status_code == 429
    assert "Rate limit retry deadline exceeded after 1 attempt(s)" in str(exc_info.value)


def test_get_weather_forecast_rejects_misaligned_columns() -> None:
    payload = {
        "daily": {
            "time": ["2025-08-14", "2025-08-15"],
            "temperature_2m_max": [26.5],
            "temperature_2m_min": [24.5, 17.0],
            "precipitation_sum": [0.0, 1.2],
            "wind_speed_10m_max": [14.5, 9.8],
        }
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with _client(handler) as client:
        with pytest.raises(FetchError, match="temperature_2m_max"):
            client.get_weather_forecast(48.85341, 2.3488, 2)


def test_get_weather_forecast_without_daily_block_is_empty() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"latitude": 48.86, "longitude": 2.34})

    with _client(handler) as client:
        assert client.get_weather_forecast(48.85341, 2.3488, 0) == []


def test_get_weather_forecast_rejects_non_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with _client(handler) as client:
        with pytest.raises(FetchError, match="not valid JSON"):
            client.get_weather_forecast(48.85341, 2.3488, 2)


def test_api_key_is_sent_but_redacted_from_errors() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        raise httpx.ConnectError(f"connection refused for {request.url}", request=request)

    settings = _make_settings(open_meteo_api_key="super-secret-key")
    with _client(handler, settings=settings) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 2)

    assert seen[0].url.params["apikey"] == "super-secret-key"
    message = str(exc_info.value)
    assert "super-secret-key" not in message
    assert "apikey=[REDACTED]" in message


class BrokenCache:
    def get(self, key: str) -> Any:
        raise RuntimeError("cache offline")

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        raise RuntimeError("cache offline")


def test_cache_failures_fall_through_to_live_fetch() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_RESULTS)

    with _client(handler, cache=BrokenCache()) as client:
        assert len(client.search_cities("Paris", 2)) == 2
        assert len(client.search_cities("Paris", 2)) == 2

    assert calls["count"] == 2


def test_default_cache_and_retry_follow_settings() -> None:
    settings = _make_settings(
        cache_max_entries=7,
        cache_ttl_seconds=60.0,
        rate_limit_max_attempts=4,
        rate_limit_retry_delay_seconds=0.25,
        retry_deadline_seconds=12.0,
    )
    client = OpenMeteoClient(
        settings=settings,
        logger=logging.getLogger("test.open_meteo"),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
    )
    try:
        assert client.cache.max_entries == 7
        assert client.cache.ttl_seconds == 60.0
        assert client.retry.max_attempts == 4
        assert client.retry.delay_seconds == 0.25
        assert client.retry.deadline_seconds == 12.0
    finally:
        client.close()


def test_get_weather_forecast_refetches_after_ttl_expiry() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_DAILY)

    clock = FakeClock()
    cache = TTLCache(max_entries=10, ttl_seconds=3600, clock=clock)
    with _client(handler, cache=cache) as client:
        client.get_weather_forecast(48.85341, 2.3488, 2)
        clock.now = 3599.0
        client.get_weather_forecast(48.85341, 2.3488, 2)
        assert calls["count"] == 1
        clock.now = 3600.0
        forecast = client.get_weather_forecast(48.85341, 2.3488, 2)

    assert calls["count"] == 2
    assert len(forecast) == 2


@pytest.mark.parametrize("time_value", [5, "2025-08-14", {"0": "2025-08-14"}])
def test_get_weather_forecast_rejects_non_list_time(time_value: Any) -> None:
    payload = {"daily": dict(PARIS_DAILY["daily"], time=time_value)}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.get_weather_forecast(48.85341, 2.3488, 2)

    assert str(exc_info.value) == (
        "Failed to fetch weather forecast: Forecast payload field 'time' is not a list."
    )


def test_search_cities_unencodable_query_is_fetch_error() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json=PARIS_RESULTS)

    with _client(handler) as client:
        with pytest.raises(FetchError) as exc_info:
            client.search_cities("Par\udcffis", 2)

    assert calls["count"] == 0
    assert str(exc_info.value).startswith("Failed to fetch cities: ")


def test_unencodable_query_maps_to_search_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=PARIS_RESULTS)

    logger = logging.getLogger("test.open_meteo")
    with _client(handler) as client:
        orchestrator = QueryOrchestrator(client, logger)
        with pytest.raises(QueryError) as exc_info:
            orchestrator.city_suggestions("Par\udcffis", 2, 0)

    assert exc_info.value.code is ErrorCode.SEARCH_FAILED
    assert exc_info.value.message.startswith("City search failed: Failed to fetch cities: ")


def test_request_params_are_logged_with_api_key_redacted() -> None:
    stream = io.StringIO()
    logger = setup_logger(
        "weather_activity_service.test_request_debug", level=logging.DEBUG, stream=stream
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=PARIS_RESULTS)

    client = OpenMeteoClient(
        settings=_make_settings(open_meteo_api_key="super-secret-key"),
        logger=logger,
        transport=httpx.MockTransport(handler),
    )
    with client:
        client.search_cities("Paris", 2)

    output = stream.getvalue()
    assert "super-secret-key" not in output
    events = [json.loads(line) for line in output.splitlines()]
    request_event = next(e for e in events if e["message"] == "Provider request")
    assert request_event["level"] == "DEBUG"
    assert request_event["context"] == {
        "path": "/search",
        "params": {
            "name": "Paris",
            "count": 2,
            "language": "en",
            "apikey": "[REDACTED]",
        },
    }
