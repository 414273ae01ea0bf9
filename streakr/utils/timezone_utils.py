"""
Timezone utility functions for STREAKr

Kick-off times are stored as naive UTC; everything shown to players is in the
configured app timezone (Australia/Melbourne by default).
"""

from datetime import datetime, timezone

import pytz
from flask import current_app


def get_app_timezone():
    """Get the application's configured timezone"""
    try:
        timezone_name = current_app.config.get("TIMEZONE", "Australia/Melbourne")
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def ensure_utc(dt):
    """Aware UTC datetime; naive values are taken to be UTC already"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt):
    """Storage form used by the models"""
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def convert_to_app_timezone(dt):
    """Convert a datetime to the application's timezone"""
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(get_app_timezone())


def convert_to_utc(dt):
    """Convert a datetime to UTC"""
    if dt is None:
        return None

    # Naive input here is local wall-clock time (fixture files, admin input)
    if dt.tzinfo is None:
        dt = get_app_timezone().localize(dt)

    return dt.astimezone(timezone.utc)


def parse_start_time(value):
    """
    Parse a fixture start time.

    Accepts ISO-8601 strings (with or without offset, trailing ``Z`` allowed)
    and datetimes. Values without an offset are local app time. Returns a
    naive UTC datetime, or None when the value cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(convert_to_utc(value))

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(convert_to_utc(parsed))


def format_match_time(dt, format_str="%a %d %b, %I:%M %p"):
    """Format a kick-off time in the application's timezone"""
    if dt is None:
        return "TBC"

    app_time = convert_to_app_timezone(dt)
    return app_time.strftime(format_str)
