from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from .types import OperatingHoursSpec

TIMEZONE_LABELS = {
    "America/New_York": "EST/EDT",
    "America/Chicago": "CST/CDT",
    "America/Denver": "MST/MDT",
    "America/Los_Angeles": "PST/PDT",
    "Europe/London": "GMT/BST",
    "Europe/Paris": "CET/CEST",
    "Asia/Tokyo": "JST",
    "Asia/Shanghai": "CST",
    "UTC": "UTC",
}


def _parse_hhmm(value: str) -> Tuple[int, int]:
    hours, minutes = value.split(":")
    return int(hours), int(minutes)


def _local_now(spec: OperatingHoursSpec, now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(spec.timezone))


def is_online(spec: Optional[OperatingHoursSpec], now: datetime) -> bool:
    """Whether the bot answers at ``now``. Naive datetimes are taken as UTC.

    Both ends of the window are inclusive at minute resolution. A window whose
    start is not before its end wraps past midnight.
    """
    if spec is None or not spec.enabled:
        return True

    local = _local_now(spec, now)
    current = local.hour * 60 + local.minute
    start_h, start_m = _parse_hhmm(spec.start)
    end_h, end_m = _parse_hhmm(spec.end)
    start = start_h * 60 + start_m
    end = end_h * 60 + end_m

    if start < end:
        return start <= current <= end
    return current >= start or current <= end


def next_opening(spec: Optional[OperatingHoursSpec], now: datetime) -> Optional[datetime]:
    if spec is None or not spec.enabled:
        return None

    local = _local_now(spec, now)
    start_h, start_m = _parse_hhmm(spec.start)
    opening = local.replace(hour=start_h, minute=start_m, second=0, microsecond=0)
    if opening <= local:
        opening = (opening + timedelta(days=1)).replace(hour=start_h, minute=start_m)
    return opening


def format_time(value: Optional[str]) -> Optional[str]:
    """'13:05' -> '1:05 PM'; anything unparsable is returned unchanged."""
    if not value:
        return value
    try:
        hours, minutes = _parse_hhmm(value)
    except ValueError:
        return value
    suffix = "AM" if hours < 12 else "PM"
    display = hours % 12 or 12
    return f"{display}:{minutes:02d} {suffix}"


def format_timezone(name: Optional[str]) -> Optional[str]:
    if not name:
        return name
    return TIMEZONE_LABELS.get(name, name)


def offline_message(spec: Optional[OperatingHoursSpec], bot_name: str) -> str:
    if spec is None or not spec.enabled:
        return ""
    return " ".join(
        [
            f"Hi! I'm {bot_name}. I'm currently offline, but I'll be back during our operating hours.",
            f"Our support hours are {format_time(spec.start)} to {format_time(spec.end)} "
            f"({format_timezone(spec.timezone)}).",
            "Feel free to leave a message and a human agent will get back to you, "
            "or try again during our operating hours!",
        ]
    )


def describe_hours(spec: Optional[OperatingHoursSpec]) -> Optional[Dict[str, Any]]:
    if spec is None:
        return None
    return {
        "enabled": spec.enabled,
        "start": format_time(spec.start),
        "end": format_time(spec.end),
        "timezone": format_timezone(spec.timezone),
    }


def time_until(target: datetime, now: datetime) -> str:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    seconds = (target - now).total_seconds()
    if seconds <= 0:
        return "now"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    if hours > 24:
        days = hours // 24
        return f"in {days} day{'s' if days > 1 else ''}"
    if hours > 0:
        return f"in {hours}h {minutes}m"
    return f"in {minutes}m"


def describe_next_opening(spec: Optional[OperatingHoursSpec], now: datetime) -> Optional[Dict[str, str]]:
    opening = next_opening(spec, now)
    if opening is None:
        return None
    return {
        "datetime": opening.astimezone(timezone.utc).isoformat(),
        "formatted": opening.strftime("%A, %B %d, %Y ") + format_time(opening.strftime("%H:%M")),
        "timeUntil": time_until(opening, now),
    }
