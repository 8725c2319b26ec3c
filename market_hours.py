"""
Market Hours for the Crude SMC paper trader.

MCX crude oil trades Monday to Friday, 09:00 - 23:30 exchange time
(Asia/Kolkata). This module answers:
- is the exchange open right now
- is a moment inside the configured entry window
- which trading day / trading week a moment belongs to

Naive datetimes are read as exchange-local time; aware datetimes are
converted to the exchange zone first.
"""

from datetime import date, datetime, time, timezone
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from config import MARKET_CLOSE, MARKET_OPEN, TRADING_TIMEZONE


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def exchange_now(now: Optional[datetime] = None, tz_name: str = TRADING_TIMEZONE) -> datetime:
    """Return `now` (default: the current moment) as exchange-local time."""
    tz = ZoneInfo(tz_name)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def from_epoch(seconds: int, tz_name: str = TRADING_TIMEZONE) -> datetime:
    """Epoch seconds as an exchange-local datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone(ZoneInfo(tz_name))


def is_weekend(check_date: date) -> bool:
    return check_date.weekday() >= 5


def is_market_open(now: Optional[datetime] = None) -> bool:
    """MCX session: weekdays, 09:00 to 23:30 inclusive."""
    local = exchange_now(now)
    if is_weekend(local.date()):
        return False
    return _parse_hhmm(MARKET_OPEN) <= local.time().replace(second=0, microsecond=0) <= _parse_hhmm(MARKET_CLOSE)


def market_status(now: Optional[datetime] = None) -> Dict:
    """
    Status payload for the session:
        {"is_open": bool, "status": str, "local_time": "HH:MM"}
    """
    local = exchange_now(now)
    if is_weekend(local.date()):
        status = "Closed (Weekend)"
    elif is_market_open(local):
        status = "Open"
    elif local.time() < _parse_hhmm(MARKET_OPEN):
        status = f"Pre-open (opens {MARKET_OPEN})"
    else:
        status = f"Closed (closed {MARKET_CLOSE})"
    return {
        "is_open": status == "Open",
        "status": status,
        "local_time": local.strftime("%H:%M"),
    }


def is_within_window(now: Optional[datetime], start: str, end: str,
                     tz_name: str = TRADING_TIMEZONE) -> bool:
    """
    True when the minute of `now` in `tz_name` lies in [start, end].
    Computed on every call; nothing is cached.
    """
    local = exchange_now(now, tz_name)
    minutes = local.hour * 60 + local.minute
    start_t = _parse_hhmm(start)
    end_t = _parse_hhmm(end)
    return start_t.hour * 60 + start_t.minute <= minutes <= end_t.hour * 60 + end_t.minute


def trading_day_key(now: Optional[datetime] = None) -> date:
    return exchange_now(now).date()


def trading_week_key(now: Optional[datetime] = None) -> Tuple[int, int]:
    iso = exchange_now(now).isocalendar()
    return iso[0], iso[1]


class SessionClock:
    """
    Remembers the last trading day and week it was polled for, so timer
    driven resets run once per period however often the timer fires.
    """

    def __init__(self):
        self.current_day: Optional[date] = None
        self.current_week: Optional[Tuple[int, int]] = None

    def new_day(self, now: datetime) -> bool:
        day = trading_day_key(now)
        if day == self.current_day:
            return False
        first = self.current_day is None
        self.current_day = day
        return not first

    def new_week(self, now: datetime) -> bool:
        week = trading_week_key(now)
        if week == self.current_week:
            return False
        first = self.current_week is None
        self.current_week = week
        return not first
