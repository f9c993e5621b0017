from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from admissions.config import settings


APP_TIMEZONE = settings.app_timezone or "Asia/Kolkata"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()


def current_academic_year(time_provider: TimeProvider | None = None) -> str:
    year = (time_provider or default_time_provider).today().year
    return f'{year}-{str(year + 1)[-2:]}'


default_time_provider = TimeProvider()
