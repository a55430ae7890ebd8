"""Best-effort weather forecasts for event pages, backed by Open-Meteo."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Callable, Protocol

import httpx

from .config import settings
from .errors import DependencyUnavailable
from .models import Event
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

DAILY_FIELDS = (
    "weather_code",
    "temperature_2m_max",
    "relative_humidity_2m_mean",
    "wind_speed_10m_max",
)

# Matched in order against the lower-cased location text.
KNOWN_PLACES: tuple[tuple[tuple[str, ...], tuple[float, float]], ...] = (
    (("stockholm",), (59.3293, 18.0686)),
    (("göteborg", "goteborg", "gothenburg"), (57.7089, 11.9746)),
    (("malmö", "malmo"), (55.6050, 13.0038)),
    (("uppsala",), (59.8586, 17.6389)),
    (("linköping", "linkoping"), (58.4108, 15.6214)),
    (("örebro", "orebro"), (59.2741, 15.2066)),
    (("västerås", "vasteras"), (59.6162, 16.5528)),
    (("helsingborg",), (56.0465, 12.6945)),
    (("jönköping", "jonkoping"), (57.7826, 14.1618)),
    (("norrköping", "norrkoping"), (58.5877, 16.1924)),
    (("lund",), (55.7047, 13.1910)),
    (("umeå", "umea"), (63.8258, 20.2630)),
    (("gävle", "gavle"), (60.6745, 17.1417)),
    (("borås", "boras"), (57.7210, 12.9401)),
)
FALLBACK_COORDINATES = (57.7210, 12.9401)

WEATHER_CODES: dict[int, tuple[str, str]] = {
    0: ("Clear sky", "☀️"),
    1: ("Mainly clear", "🌤️"),
    2: ("Partly cloudy", "⛅"),
    3: ("Overcast", "☁️"),
    45: ("Fog", "🌫️"),
    48: ("Depositing rime fog", "🌫️"),
    51: ("Light drizzle", "🌦️"),
    53: ("Moderate drizzle", "🌦️"),
    55: ("Dense drizzle", "🌦️"),
    61: ("Light rain", "🌧️"),
    63: ("Moderate rain", "🌧️"),
    65: ("Heavy rain", "🌧️"),
    71: ("Light snowfall", "🌨️"),
    73: ("Moderate snowfall", "🌨️"),
    75: ("Heavy snowfall", "🌨️"),
    77: ("Snow grains", "🌨️"),
    80: ("Light rain showers", "🌦️"),
    81: ("Moderate rain showers", "🌦️"),
    82: ("Violent rain showers", "🌦️"),
    85: ("Light snow showers", "🌨️"),
    86: ("Heavy snow showers", "🌨️"),
    95: ("Thunderstorm", "⛈️"),
    96: ("Thunderstorm with light hail", "⛈️"),
    99: ("Thunderstorm with heavy hail", "⛈️"),
}
UNKNOWN_WEATHER = ("Unknown weather", "❓")


@dataclass(frozen=True)
class Forecast:
    temperature: float
    humidity: float
    wind_speed: float
    description: str
    icon: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class WeatherProvider(Protocol):
    def get_forecast(self, location: str, on: date) -> Forecast | None: ...


class NullWeatherProvider:
    """Provider that never has data."""

    def get_forecast(self, location: str, on: date) -> Forecast | None:
        return None


def coordinates_for(location: str | None) -> tuple[float, float]:
    lowered = (location or "").lower()
    for names, coordinates in KNOWN_PLACES:
        if any(name in lowered for name in names):
            return coordinates
    return FALLBACK_COORDINATES


def describe_weather_code(code: int) -> tuple[str, str]:
    return WEATHER_CODES.get(code, UNKNOWN_WEATHER)


def _parse_daily(payload: Any) -> Forecast:
    try:
        daily = payload["daily"]
        code = int(daily["weather_code"][0])
        description, icon = describe_weather_code(code)
        return Forecast(
            temperature=float(daily["temperature_2m_max"][0]),
            humidity=float(daily["relative_humidity_2m_mean"][0]),
            wind_speed=float(daily["wind_speed_10m_max"][0]),
            description=description,
            icon=icon,
        )
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise DependencyUnavailable(f"Malformed forecast payload: {exc!r}") from exc


class OpenMeteoProvider:
    """Daily forecast lookups with a bounded timeout.

    Dates outside today's forecast horizon are answered with ``None`` without
    a network call; every transport or payload problem also yields ``None``.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        forecast_days: int | None = None,
        client: httpx.Client | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.base_url = base_url or settings.weather_base_url
        self.timeout = timeout if timeout is not None else settings.weather_timeout_seconds
        self.forecast_days = forecast_days or settings.weather_forecast_days
        self._client = client
        self._today = today or (lambda: utcnow().date())

    def in_window(self, on: date) -> bool:
        offset = (on - self._today()).days
        return 0 <= offset < self.forecast_days

    def get_forecast(self, location: str, on: date) -> Forecast | None:
        if not self.in_window(on):
            return None
        try:
            return self._fetch(location, on)
        except DependencyUnavailable as exc:
            logger.warning("Weather lookup failed for %r on %s: %s", location, on, exc)
            return None

    def _fetch(self, location: str, on: date) -> Forecast:
        latitude, longitude = coordinates_for(location)
        params = {
            "latitude": f"{latitude:.2f}",
            "longitude": f"{longitude:.2f}",
            "daily": ",".join(DAILY_FIELDS),
            "timezone": "UTC",
            "start_date": on.isoformat(),
            "end_date": on.isoformat(),
        }
        timeout = httpx.Timeout(self.timeout)
        try:
            if self._client is not None:
                response = self._client.get(self.base_url, params=params, timeout=timeout)
            else:
                response = httpx.get(self.base_url, params=params, timeout=timeout)
            response.raise_for_status()
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            raise DependencyUnavailable(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise DependencyUnavailable("Forecast response was not JSON") from exc
        return _parse_daily(payload)


def forecast_for_event(provider: WeatherProvider | None, event: Event) -> Forecast | None:
    """Decorate an event with weather, swallowing anything the provider raises."""
    if provider is None or event.start_time is None:
        return None
    try:
        return provider.get_forecast(event.location, event.start_time.date())
    except Exception:
        logger.exception("Weather provider raised for event %s", event.id)
        return None
