"""Provider integrations for geocoding and daily forecasts."""

from .base import WeatherDataProvider
from .open_meteo import OpenMeteoClient
from .retry import RateLimitRetry, RetryOutcome, RetryState

__all__ = [
    "OpenMeteoClient",
    "RateLimitRetry",
    "RetryOutcome",
    "RetryState",
    "WeatherDataProvider",
]
