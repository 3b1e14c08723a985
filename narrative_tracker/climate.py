"""Climate derivation and temperature units.

Climate is never stored or replayed. It is recomputed from the forecast of
the current area, the narrative time and the kind of place the scene is in,
so moving indoors or letting time pass changes it without a dedicated event.
Temperatures are Fahrenheit internally and converted for display.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Literal

from narrative_tracker.models import Climate, Forecast, Location

TemperatureUnit = Literal["fahrenheit", "celsius"]

# Hour of the daily low and the daily high for interpolation.
_LOW_HOUR = 5
_HIGH_HOUR = 15


def fahrenheit_to_celsius(f: float) -> int:
    return round((f - 32) * 5 / 9)


def celsius_to_fahrenheit(c: float) -> int:
    return round(c * 9 / 5 + 32)


def to_display_temp(fahrenheit: float, unit: TemperatureUnit) -> int:
    if unit == "celsius":
        return fahrenheit_to_celsius(fahrenheit)
    return round(fahrenheit)


def to_storage_temp(value: float, unit: TemperatureUnit) -> int:
    if unit == "celsius":
        return celsius_to_fahrenheit(value)
    return round(value)


def format_temperature(fahrenheit: float, unit: TemperatureUnit) -> str:
    symbol = "°C" if unit == "celsius" else "°F"
    return f"{to_display_temp(fahrenheit, unit)}{symbol}"


def _diurnal(low: float, high: float, hour: float) -> float:
    """Cosine curve: ``low`` at 05:00, ``high`` at 15:00."""
    if _LOW_HOUR <= hour <= _HIGH_HOUR:
        phase = (hour - _LOW_HOUR) / (_HIGH_HOUR - _LOW_HOUR)
    else:
        # cooling from the afternoon high to the next morning's low
        since_high = (hour - _HIGH_HOUR) % 24
        phase = 1 - since_high / (24 - (_HIGH_HOUR - _LOW_HOUR))
    return low + (high - low) * (1 - math.cos(math.pi * phase)) / 2


def outdoor_conditions(forecast: Forecast, when: datetime) -> tuple[float, str] | None:
    """(temperature °F, condition) outdoors at ``when``, or None if not covered."""
    for day in forecast.days:
        if day.day != when.date():
            continue
        for hourly in day.hourly:
            if hourly.hour == when.hour:
                return hourly.temperature, hourly.condition
        hour = when.hour + when.minute / 60
        return _diurnal(day.low, day.high, hour), day.condition
    return None


def indoor_temperature(outdoor: float, location_type: str) -> float:
    if location_type in ("modern", "vehicle"):
        return 70.0
    if location_type == "heated":
        return max(outdoor, 65.0)
    if location_type == "unheated":
        return outdoor + (60.0 - outdoor) / 2
    if location_type == "underground":
        return 55.0
    return outdoor


def derive_climate(
    forecast: Forecast | None, time: datetime | None, location_type: str
) -> Climate | None:
    if forecast is None or time is None:
        return None
    conditions = outdoor_conditions(forecast, time)
    if conditions is None:
        return None
    outdoor, weather = conditions
    return Climate(
        temperature=round(indoor_temperature(outdoor, location_type)),
        weather=weather,
        indoors=location_type != "outdoor",
    )


def climate_for(
    forecasts: dict[str, Forecast], location: Location | None, time: datetime | None
) -> Climate | None:
    """Climate at a location, looking up the forecast of its area."""
    if location is None:
        return None
    return derive_climate(forecasts.get(location.area), time, location.location_type)
