"""Command-line query shell: city suggestions, forecasts and activity rankings."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import load_settings
from .exceptions import ConfigError, QueryError
from .log_setup import setup_logger
from .models import ActivityScore, City, DailyWeather
from .orchestrator import QueryOrchestrator
from .provider.open_meteo import OpenMeteoClient


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse query shell arguments."""
    parser = argparse.ArgumentParser(
        description="Query city suggestions, weather forecasts and activity rankings."
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results (or the error) as JSON instead of a table.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    cities = subparsers.add_parser("cities", help="Suggest cities matching a name.")
    cities.add_argument("query", type=str, help="City name to search for.")
    cities.add_argument("--limit", type=int, default=None, help="Page size.")
    cities.add_argument("--offset", type=int, default=0, help="Items to skip.")

    for name, help_text in (
        ("forecast", "Daily weather forecast for coordinates."),
        ("ranking", "Rank tourist activities for coordinates."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--lat", type=float, required=True, help="City latitude.")
        sub.add_argument("--lon", type=float, required=True, help="City longitude.")
        sub.add_argument("--days", type=int, default=None, help="Forecast days.")

    return parser.parse_args(argv)


def _validate_cli_input(args: argparse.Namespace) -> None:
    if args.command == "cities":
        if args.limit is not None and args.limit < 0:
            raise ValueError("--limit must be >= 0 when provided.")
        if args.offset < 0:
            raise ValueError("--offset must be >= 0.")
    elif args.days is not None and args.days < 0:
        raise ValueError("--days must be >= 0 when provided.")


def _run_query(
    orchestrator: QueryOrchestrator, args: argparse.Namespace
) -> list[City] | list[DailyWeather] | list[ActivityScore]:
    if args.command == "cities":
        return orchestrator.city_suggestions(args.query, limit=args.limit, offset=args.offset)
    if args.command == "forecast":
        return orchestrator.weather_forecast(args.lat, args.lon, days=args.days)
    return orchestrator.activity_ranking(args.lat, args.lon, days=args.days)


def _print_cities(console: Console, cities: list[City]) -> None:
    table = Table(title="City Suggestions")
    table.add_column("ID")
    table.add_column("Name", overflow="fold")
    table.add_column("Country", overflow="fold")
    table.add_column("Lat")
    table.add_column("Lon")
    table.add_column("Population")
    for city in cities:
        table.add_row(
            city.id,
            escape(city.name),
            escape(city.country) if city.country else "-",
            f"{city.latitude:.4f}",
            f"{city.longitude:.4f}",
            f"{city.population:,}" if city.population is not None else "-",
        )
    console.print(table)


def _print_forecast(console: Console, forecast: list[DailyWeather]) -> None:
    table = Table(title="Daily Forecast")
    table.add_column("Date")
    table.add_column("Max °C")
    table.add_column("Min °C")
    table.add_column("Precip mm")
    table.add_column("Wind km/h")
    for day in forecast:
        table.add_row(
            day.date,
            f"{day.temperature_max:g}",
            f"{day.temperature_min:g}",
            f"{day.precipitation_sum:g}",
            f"{day.wind_speed_max:g}",
        )
    console.print(table)


def _print_ranking(console: Console, ranking: list[ActivityScore]) -> None:
    table = Table(title="Activity Ranking")
    table.add_column("Rank")
    table.add_column("Activity")
    table.add_column("Score")
    for activity in ranking:
        table.add_row(
            str(activity.rank),
            activity.type.value,
            f"{activity.suitability_score:.2f}",
        )
    console.print(table)


def _print_result(
    console: Console, command: str, result: Sequence[Any], as_json: bool
) -> None:
    if as_json:
        payload: list[dict[str, Any]] = [item.model_dump(mode="json") for item in result]
        console.print_json(data={"data": payload})
        return
    if command == "cities":
        _print_cities(console, list(result))
    elif command == "forecast":
        _print_forecast(console, list(result))
    else:
        _print_ranking(console, list(result))


def _print_error(console: Console, error: QueryError, as_json: bool) -> None:
    if as_json:
        console.print_json(data={"error": error.to_dict()})
        return
    console.print(f"{error.code.value}: {error.message}", markup=False, highlight=False)


def main(argv: Sequence[str] | None = None) -> int:
    """Run one query and print the result."""
    args = parse_args(argv)
    logger = setup_logger()
    console = Console()

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", exc)
        return 2
    logger.setLevel(settings.log_level)
    logger.debug("Loaded settings: %s", settings.safe_summary())

    try:
        _validate_cli_input(args)
    except ValueError as exc:
        logger.error("Invalid arguments: %s", exc)
        return 2

    try:
        with OpenMeteoClient(settings=settings, logger=logger) as provider:
            orchestrator = QueryOrchestrator.from_settings(settings, provider, logger)
            result = _run_query(orchestrator, args)
    except QueryError as exc:
        _print_error(console, exc, as_json=args.json)
        return 4
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected query failure: %s", exc)
        return 99

    _print_result(console, args.command, result, as_json=args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
