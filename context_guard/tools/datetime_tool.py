"""Current date/time fact for prompts."""

from __future__ import annotations

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

KOREAN_WEEKDAYS = ["월요일", "화요일", "수요일", "목요일", "금요일", "토요일", "일요일"]


class DateTimeTool:
    def __init__(
        self,
        timezone: str = "Asia/Seoul",
        locale: str = "ko",
        clock: Callable[[ZoneInfo], datetime] | None = None,
    ) -> None:
        self.tz = ZoneInfo(timezone)
        self.locale = locale
        self._clock = clock or (lambda tz: datetime.now(tz))

    def now(self) -> datetime:
        return self._clock(self.tz)

    def format_date(self, dt: datetime | None = None) -> str:
        dt = dt or self.now()
        if self.locale == "ko":
            return f"{dt.year}년 {dt.month:02d}월 {dt.day:02d}일"
        return dt.strftime("%B %d, %Y")

    def format_datetime(self, dt: datetime | None = None) -> str:
        """``2026년 10월 18일 14시 05분 (일요일)`` or the English equivalent."""
        dt = dt or self.now()
        if self.locale == "ko":
            return (
                f"{self.format_date(dt)} {dt.hour:02d}시 {dt.minute:02d}분 "
                f"({KOREAN_WEEKDAYS[dt.weekday()]})"
            )
        return dt.strftime("%B %d, %Y %H:%M (%A)")

    def describe(self) -> str:
        label = "현재 날짜와 시간" if self.locale == "ko" else "Current date and time"
        return f"{label}: {self.format_datetime()}"
