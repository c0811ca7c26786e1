import re
from datetime import datetime, timezone

from warden.util.logger import get_logger

logger = get_logger("format_utils")

PERMANENT_DURATION = "Permanent"

_DURATION_PATTERN = re.compile(r"^(\d+)([mhdw])$")
_UNIT_SECONDS = {
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
}


def parse_duration(value: str | None) -> int | None:
    """Parse a duration such as ``30m``, ``2h``, ``1d`` or ``1w`` into seconds.

    Returns None for empty, malformed or zero durations.
    """
    if not value:
        return None
    match = _DURATION_PATTERN.match(value.strip().lower())
    if match is None:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return amount * _UNIT_SECONDS[match.group(2)]


def format_duration(seconds: float | None) -> str:
    """
    Convert a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds. ``None`` or 0 means permanent.

    Returns:
        str: Human-readable duration string.
    """
    if not seconds:
        return PERMANENT_DURATION
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds} secs"
    elif seconds < 3600:
        mins = seconds // 60
        return f"{mins} min{'s' if mins != 1 else ''}"
    elif seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''}"
    else:
        days = seconds // 86400
        return f"{days} day{'s' if days != 1 else ''}"


def humanize_timestamp(value: datetime) -> str:
    """Return a human-readable timestamp (YYYY-MM-DD HH:MM:SS) in UTC.

    Values in the future (clock skew between hosts) are clamped to now.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    now = datetime.now(timezone.utc)
    if value > now:
        logger.warning("Clamping future timestamp %s to now", value.isoformat())
        value = now
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")
