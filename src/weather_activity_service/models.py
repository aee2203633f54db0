"""Typed domain models shared by the provider client, scoring and query layers."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class City(BaseModel):
    """Geocoding match returned by the provider."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Provider city identifier, stringified")
    name: str
    latitude: float
    longitude: float
    country: str | None = None
    population: int | None = Field(default=None, ge=0)


class DailyWeather(BaseModel):
    """One forecast day: temperatures in °C, precipitation in mm, wind in km/h."""

    model_config = ConfigDict(frozen=True)

    date: str = Field(description="ISO 8601 calendar date")
    temperature_max: float
    temperature_min: float
    precipitation_sum: float = Field(ge=0.0)
    wind_speed_max: float = Field(ge=0.0)


class ActivityType(StrEnum):
    SKIING = "SKIING"
    SURFING = "SURFING"
    INDOOR_SIGHTSEEING = "INDOOR_SIGHTSEEING"
    OUTDOOR_SIGHTSEEING = "OUTDOOR_SIGHTSEEING"


class ActivityScore(BaseModel):
    """Ranked suitability of one activity for a forecast window."""

    model_config = ConfigDict(frozen=True)

    type: ActivityType
    rank: int = Field(ge=1)
    suitability_score: float = Field(ge=0.0, le=1.0)
