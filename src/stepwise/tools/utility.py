"""General utility tools: canned weather lookups and the current time."""

from __future__ import annotations

from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
)
from zoneinfo import ZoneInfo

from stepwise.tools.registry import (
    ToolDescriptor,
    param,
)

Clock = Callable[[], datetime]

WEATHER_DATA: Mapping[str, str] = {
    "beijing": "Sunny, 15-25°C",
    "shanghai": "Cloudy, 18-26°C",
    "shenzhen": "Rain, 22-28°C",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utility_tools(
    weather: Optional[Mapping[str, str]] = None,
    clock: Optional[Clock] = None,
) -> List[ToolDescriptor]:
    """
    Build ``get_weather`` and ``get_current_time``.

    Parameters
    ----------
    weather:
        City name to forecast text; lookups ignore case.  Defaults to :data:`WEATHER_DATA`.
    clock:
        Returns the current aware datetime.  Defaults to UTC wall-clock time.
    """
    forecasts = {city.lower(): text for city, text in (weather or WEATHER_DATA).items()}
    now = clock or _utc_now

    def get_weather(args: Dict[str, Any]) -> str:
        city = args["city"]
        forecast = forecasts.get(city.strip().lower())
        if forecast is None:
            return f"No weather data for {city}"
        return f"{city}: {forecast}"

    def get_current_time(args: Dict[str, Any]) -> str:
        # An unknown zone raises here and surfaces as a handler fault
        zone = ZoneInfo(args["timezone"])
        stamp = now().astimezone(zone)
        return f"Current time ({zone.key}): {stamp:%Y-%m-%d %H:%M:%S}"

    return [
        ToolDescriptor(
            name="get_weather",
            description="Get the weather forecast for a city.",
            handler=get_weather,
            parameters=(param("city", "string", description="City name, e.g. 'Beijing'"),),
        ),
        ToolDescriptor(
            name="get_current_time",
            description="Get the current date and time.",
            handler=get_current_time,
            parameters=(
                param(
                    "timezone",
                    "string",
                    required=False,
                    default="UTC",
                    description="IANA time zone, e.g. 'Asia/Shanghai'",
                ),
            ),
        ),
    ]
