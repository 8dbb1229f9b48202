from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = 'Asia/Kolkata'


class Clock:
    """Wall clock bound to the clinic's reference timezone.

    now() is always an aware UTC datetime; today() is the calendar day in the
    reference timezone, which is what decides whether a checklist is editable.
    """

    def __init__(self, tz_name=DEFAULT_TIMEZONE):
        self.tz = ZoneInfo(tz_name)

    def now(self):
        return datetime.now(timezone.utc)

    def today(self):
        return self.now().astimezone(self.tz).date()


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, now, tz_name=DEFAULT_TIMEZONE):
        super().__init__(tz_name)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self.tz)
        self._now = now.astimezone(timezone.utc)

    def now(self):
        return self._now

    def advance(self, seconds):
        self._now += timedelta(seconds=seconds)
