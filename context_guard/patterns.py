"""Keyword patterns that route a question to the date/weather lookups.

Korean keywords match as substrings (particles attach directly to nouns);
English keywords match on word boundaries.
"""

from __future__ import annotations

import re

DATETIME_KEYWORDS_KO: list[str] = ["날짜", "시간", "요일", "몇 시", "며칠", "오늘"]
WEATHER_KEYWORDS_KO: list[str] = ["날씨", "기온", "온도", "습도", "바람", "기상"]

DATETIME_PATTERNS_EN: list[str] = [
    r"\bwhat time\b",
    r"\bwhat day\b",
    r"\b(?:today'?s )?date\b",
    r"\btoday\b",
    r"\bcurrent time\b",
    r"\bday of the week\b",
]
WEATHER_PATTERNS_EN: list[str] = [
    r"\bweather\b",
    r"\btemperature\b",
    r"\bhumidity\b",
    r"\bforecast\b",
    r"\bwind\b",
]

_DATETIME_RE = re.compile("|".join(DATETIME_PATTERNS_EN), re.IGNORECASE)
_WEATHER_RE = re.compile("|".join(WEATHER_PATTERNS_EN), re.IGNORECASE)


def wants_datetime(message: str) -> bool:
    lowered = message.lower()
    return any(k in lowered for k in DATETIME_KEYWORDS_KO) or bool(_DATETIME_RE.search(message))


def wants_weather(message: str) -> bool:
    lowered = message.lower()
    return any(k in lowered for k in WEATHER_KEYWORDS_KO) or bool(_WEATHER_RE.search(message))
