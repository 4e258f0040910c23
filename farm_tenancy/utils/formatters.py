"""
Formatting and normalisation helpers shared by services and blueprints.
"""
import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Any, Optional, Union


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (all columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: Optional[Union[date, datetime]]) -> Optional[str]:
    """Render a date/datetime for JSON payloads and cache entries."""
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse the timestamp shapes found in legacy exports and JSON bodies.

    Accepts datetime objects, ISO-8601 strings (with or without 'Z'),
    epoch seconds, and exported document-store timestamps
    ({"_seconds": ..., "_nanoseconds": ...}). Aware values are converted to naive UTC.

    Examples:
        parse_datetime("2024-03-01T10:00:00Z") -> datetime(2024, 3, 1, 10, 0)
        parse_datetime({"_seconds": 0}) -> datetime(1970, 1, 1, 0, 0)
        parse_datetime(None) -> None
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, dict) and ('_seconds' in value or 'seconds' in value):
        seconds = value.get('_seconds', value.get('seconds', 0))
        nanos = value.get('_nanoseconds', value.get('nanoseconds', 0)) or 0
        parsed = datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Unrecognised timestamp: {value!r}")
    else:
        raise ValueError(f"Unrecognised timestamp: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def generate_slug(name: str) -> str:
    """Generate URL-safe slug from a farm name."""
    # Normalize unicode characters
    slug = unicodedata.normalize('NFKD', name)
    slug = slug.encode('ascii', 'ignore').decode('ascii')

    # Convert to lowercase and replace spaces/special chars with hyphens
    slug = slug.lower()
    slug = re.sub(r'[^a-z0-9]+', '-', slug)
    slug = slug.strip('-')

    # Limit length
    slug = slug[:50].rstrip('-')

    return slug or 'farm'


def is_valid_email(email: str) -> bool:
    """Validate email format."""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email or '') is not None


def rupees(amount_minor: Optional[int]) -> str:
    """
    Format an amount stored in paisa as rupees.

    Examples:
        rupees(499900) -> "Rs. 4,999"
        rupees(0) -> "Rs. 0"
    """
    if amount_minor is None:
        return "-"
    value = amount_minor / 100
    if value == int(value):
        return f"Rs. {int(value):,}"
    return f"Rs. {value:,.2f}"
