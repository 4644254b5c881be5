# civil days of a fixed reference timezone, stored as utc instants

import calendar
import re
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chatlog.errors import ValidationError

CIVIL_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_storage(instant: datetime) -> datetime:
    return instant.astimezone(timezone.utc)


def from_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def months_before(day: date, months: int) -> date:
    # clamps to the last day of the target month, e.g. Mar 31 -> Feb 28
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


class DateNormalizer:
    def __init__(self, tz_name: str = "Asia/Seoul"):
        try:
            self.tz = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError:
            raise ValueError(f"Unknown timezone: {tz_name}")
        self.tz_name = tz_name

    def parse_civil_date(self, value: str, field: str = "date") -> date:
        if not isinstance(value, str) or not CIVIL_DATE_RE.match(value):
            raise ValidationError(f"Invalid {field} format, expected YYYY-MM-DD")
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Invalid {field} format, expected YYYY-MM-DD")

    def parse_instant(self, value: str, field: str = "date") -> datetime:
        # values without an offset are wall-clock time of the reference timezone
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Invalid {field} format")
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"Invalid {field} format")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tz)
        try:
            return parsed.astimezone(timezone.utc)
        except OverflowError:
            raise ValidationError(f"{field} is out of range")

    def today(self, now: Optional[datetime] = None) -> date:
        now = now or utc_now()
        return now.astimezone(self.tz).date()

    def day_start(self, day: date, field: str = "date") -> datetime:
        try:
            return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)
        except OverflowError:
            raise ValidationError(f"{field} is out of range")

    def day_end(self, day: date, field: str = "date") -> datetime:
        try:
            return datetime.combine(day, time.max, tzinfo=self.tz).astimezone(timezone.utc)
        except OverflowError:
            raise ValidationError(f"{field} is out of range")

    def bucket_day(self, value: str, field: str = "chat_date") -> datetime:
        instant = self.parse_instant(value, field=field)
        try:
            civil_day = instant.astimezone(self.tz).date()
        except OverflowError:
            raise ValidationError(f"{field} is out of range")
        return self.day_start(civil_day, field=field)

    def resolve_window(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[datetime, datetime]:
        today = self.today(now)
        if start_date:
            start_day = self.parse_civil_date(start_date, field="startDate")
        else:
            start_day = months_before(today, 1)
        if end_date:
            end_day = self.parse_civil_date(end_date, field="endDate")
        else:
            end_day = today
        if start_day > end_day:
            raise ValidationError("startDate must not be after endDate")
        return self.day_start(start_day, field="startDate"), self.day_end(end_day, field="endDate")

    def to_civil_date(self, instant: datetime) -> str:
        return from_storage(instant).astimezone(self.tz).date().isoformat()

    def to_civil_timestamp(self, instant: datetime) -> str:
        return from_storage(instant).astimezone(self.tz).isoformat()

    def parse_instant_or_now(self, value: Optional[str], field: str = "date") -> datetime:
        if value is None or value == "":
            return utc_now()
        return self.parse_instant(value, field=field)

    def window_as_civil(self, window: Tuple[datetime, datetime]) -> Tuple[str, str]:
        start, end = window
        return self.to_civil_date(start), self.to_civil_date(end)
