"""OpenWeatherMap weather lookup and weather-question helpers."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timedelta, timezone

import httpx

from ..types import (
    ConfigurationError,
    DailyForecast,
    LocationNotFound,
    ProviderError,
    WeatherReport,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.openweathermap.org"

LOCATION_RE = re.compile(r"([가-힣]+?[시군구]?)(?:\s+|의\s*|\s*지역\s*)(날씨|기온|온도|습도|바람|기상)")
KNOWN_CITY_RE = re.compile(
    r"(서울|부산|대구|인천|광주|대전|울산|세종|경기|강원|충북|충남|전북|전남|경북|경남|제주)"
    r"(?:\s+|에|의|지역)?"
)
# Words the location pattern can capture that are not places
_NOT_LOCATIONS = {"오늘", "내일", "모레", "지금", "현재", "요즘", "이번주", "주말"}

WEATHER_UNAVAILABLE_NOTE = (
    "날씨 정보를 제공할 수 없습니다. 날씨 서비스에 연결하지 못했습니다. 나중에 다시 시도해주세요."
)


def extract_location(message: str, default: str = "서울") -> str:
    """Place name preceding a weather word, else a known city, else *default*."""
    for match in LOCATION_RE.finditer(message):
        if match.group(1) not in _NOT_LOCATIONS:
            return match.group(1)
    backup = KNOWN_CITY_RE.search(message)
    if backup:
        return backup.group(1)
    return default


def _local_hhmm(unix_ts: int | float | None, offset_seconds: int) -> str:
    if unix_ts is None:
        return ""
    tz = timezone(timedelta(seconds=offset_seconds))
    return datetime.fromtimestamp(unix_ts, tz).strftime("%H:%M")


def format_weather(report: WeatherReport, date_text: str = "") -> str:
    lines = [f"📍 **{report.location}** 날씨 정보:"]
    if date_text:
        lines.append(f"- 날짜: {date_text}")
    lines.extend([
        f"- 날씨: {report.description}",
        f"- 현재 기온: {report.temperature}°C (체감 온도: {report.feels_like}°C)",
        f"- 습도: {report.humidity}%",
        f"- 풍속: {report.wind_speed}m/s",
        f"- 일출: {report.sunrise}",
        f"- 일몰: {report.sunset}",
    ])
    if report.daily_forecast:
        forecast = report.daily_forecast[0]
        lines.extend([
            "",
            "🔮 **예보**:",
            f"- 날짜: {forecast.date}",
            f"- 날씨: {forecast.description}",
            f"- 최저/최고 기온: {forecast.temp_min}°C / {forecast.temp_max}°C",
        ])
    return "\n".join(lines)


class OpenWeatherProvider:
    """Geocode a place name, then fetch current conditions.

    With ``use_onecall`` the One Call 3.0 endpoint is used, which also
    yields a one-day forecast.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_key_env: str = "OPENWEATHER_API_KEY",
        use_onecall: bool = False,
        timeout: float = 10.0,
        base_url: str = API_BASE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get(api_key_env, "")
        self.api_key_env = api_key_env
        self.use_onecall = use_onecall
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def _get_json(self, path: str, params: dict):
        try:
            response = await self._client.get(f"{self.base_url}{path}", params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP error: {e}", provider="openweather") from e
        if response.status_code != 200:
            raise ProviderError(
                f"HTTP {response.status_code}: {response.text}",
                provider="openweather",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON: {e}", provider="openweather") from e

    async def lookup(self, location: str) -> WeatherReport:
        if not self.api_key:
            raise ConfigurationError(
                f"No OpenWeatherMap API key found. Set {self.api_key_env} env var."
            )

        geo = await self._get_json(
            "/geo/1.0/direct", {"q": location, "limit": 1, "appid": self.api_key},
        )
        if not geo:
            raise LocationNotFound(f"Location not found: {location}", provider="openweather")
        try:
            lat, lon = geo[0]["lat"], geo[0]["lon"]
            logger.debug("Geocoded %s to (%s, %s)", location, lat, lon)
            params = {"lat": lat, "lon": lon, "appid": self.api_key, "units": "metric", "lang": "kr"}
            if self.use_onecall:
                params["exclude"] = "minutely,hourly,alerts"
                data = await self._get_json("/data/3.0/onecall", params)
                return self._parse_onecall(data, location)
            data = await self._get_json("/data/2.5/weather", params)
            return self._parse_current(data, location)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected weather payload: {e}", provider="openweather") from e

    def _parse_current(self, data: dict, location: str) -> WeatherReport:
        offset = int(data.get("timezone", 0))
        return WeatherReport(
            location=data.get("name") or location,
            description=data["weather"][0]["description"],
            temperature=data["main"]["temp"],
            feels_like=data["main"]["feels_like"],
            humidity=data["main"]["humidity"],
            wind_speed=data["wind"]["speed"],
            sunrise=_local_hhmm(data["sys"].get("sunrise"), offset),
            sunset=_local_hhmm(data["sys"].get("sunset"), offset),
        )

    def _parse_onecall(self, data: dict, location: str) -> WeatherReport:
        offset = int(data.get("timezone_offset", 0))
        current = data["current"]
        tz = timezone(timedelta(seconds=offset))
        forecast = [
            DailyForecast(
                date=datetime.fromtimestamp(day["dt"], tz).strftime("%m월 %d일"),
                temp_min=day["temp"]["min"],
                temp_max=day["temp"]["max"],
                description=day["weather"][0]["description"],
            )
            for day in (data.get("daily") or [])[:1]
        ]
        # One Call does not echo a place name
        return WeatherReport(
            location=location,
            description=current["weather"][0]["description"],
            temperature=current["temp"],
            feels_like=current["feels_like"],
            humidity=current["humidity"],
            wind_speed=current["wind_speed"],
            sunrise=_local_hhmm(current.get("sunrise"), offset),
            sunset=_local_hhmm(current.get("sunset"), offset),
            daily_forecast=forecast,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
