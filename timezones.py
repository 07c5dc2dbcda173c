import re
from datetime import date, datetime, timedelta, timezone

# Python 3.9+ zoneinfo, but some Windows installs can be missing tzdata.
try:
    from zoneinfo import ZoneInfo
except Exception:
    ZoneInfo = None


DEFAULT_OFFSET = "UTC+0"

# Hand-maintained: whole-hour offsets only, no DST handling.
OFFSET_ZONES = {
    "UTC+13": "Pacific/Tongatapu",
    "UTC+12": "Pacific/Auckland",
    "UTC+11": "Pacific/Noumea",
    "UTC+10": "Australia/Sydney",
    "UTC+9": "Asia/Tokyo",
    "UTC+8": "Asia/Singapore",
    "UTC+7": "Asia/Bangkok",
    "UTC+6": "Asia/Dhaka",
    "UTC+5": "Asia/Karachi",
    "UTC+4": "Asia/Dubai",
    "UTC+3": "Europe/Moscow",
    "UTC+2": "Europe/Athens",
    "UTC+1": "Europe/Paris",
    "UTC+0": "UTC",
    "UTC-4": "America/Caracas",
    "UTC-5": "America/New_York",
    "UTC-6": "America/Chicago",
    "UTC-7": "America/Denver",
    "UTC-8": "America/Los_Angeles",
    "UTC-9": "America/Anchorage",
    "UTC-10": "Pacific/Honolulu",
}

_OFFSET_RE = re.compile(r"^UTC([+-]\d{1,2})$")
_SHEET_DATE_RE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{4})\s*$")


def offset_to_zone(label) -> str:
    """Map a "UTC+N" label from the Users Table to a zone name; anything unknown is UTC."""
    if not isinstance(label, str):
        return "UTC"
    return OFFSET_ZONES.get(label.strip(), "UTC")


def _fixed_offset(zone_name: str):
    for label, name in OFFSET_ZONES.items():
        if name == zone_name:
            m = _OFFSET_RE.match(label)
            if m:
                return timezone(timedelta(hours=int(m.group(1))))
    return timezone.utc


def get_zone(zone_name: str):
    if ZoneInfo is not None:
        try:
            return ZoneInfo(zone_name)
        except Exception:
            pass
    return _fixed_offset(zone_name)


def today_in_zone(zone_name: str, now: datetime = None) -> date:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(get_zone(zone_name)).date()


def format_sheet_date(d: date) -> str:
    # Logs sheet stores d/M/yyyy without zero padding
    return f"{d.day}/{d.month}/{d.year}"


def parse_sheet_date(text):
    if not text or not isinstance(text, str):
        return None
    m = _SHEET_DATE_RE.match(text)
    if not m:
        return None
    day, month, year = (int(x) for x in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_iso_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip())
    except Exception:
        return None
