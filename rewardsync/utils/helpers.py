import re
from datetime import datetime

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse an RFC3339 timestamp as sent by Twitch.

    Twitch may send more than six fractional digits and a trailing "Z"; both are
    normalized before parsing.

    Args:
        value: Timestamp string, e.g. "2024-05-01T18:37:32.123456789Z".

    Returns:
        Timezone-aware datetime, or None if the value is empty or malformed.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def mask_token(token: str | None) -> str:
    """Shorten a secret for logging."""
    return f"{token[:5]}...{token[-5:]}" if token else "empty"


def split_list(value: str, lower: bool = False) -> list[str]:
    """Split a comma separated settings value, dropping blanks."""
    items = [item.strip() for item in value.split(",") if item.strip()]
    return [item.lower() for item in items] if lower else items
