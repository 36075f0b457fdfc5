from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

UTC = ZoneInfo("UTC")


def to_db(dt: datetime) -> datetime:
    """Aware datetime -> naive UTC (column convention)."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def from_db(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC)


def combine_local(d: date, t: time, tz: ZoneInfo) -> datetime:
    return datetime(d.year, d.month, d.day, t.hour, t.minute, t.second, tzinfo=tz)


def iso_weekday(d: date) -> int:
    """1=Monday .. 7=Sunday."""
    return d.isoweekday()


def day_instants(d: date, t: time, tz: ZoneInfo, interval_hours: int | None = None) -> list[datetime]:
    """
    Local instants on calendar day `d` for a dosing rule, as aware datetimes.
    Without an interval: just `t`. With one: `t`, `t+h`, ... while still on `d`.
    """
    first = combine_local(d, t, tz)
    if not interval_hours:
        return [first]
    out = []
    cur = first
    while cur.date() == d:
        out.append(cur)
        # step in UTC so DST shifts do not repeat or drop a dose
        cur = (cur.astimezone(UTC) + timedelta(hours=interval_hours)).astimezone(tz)
    return out


def parse_hhmm(s: str) -> time:
    hh, mm = (int(x) for x in s.split(":", 1))
    return time(hh, mm)
