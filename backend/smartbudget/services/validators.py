import math
import re
from datetime import datetime, timezone
from typing import Any

ALLOWED_CURRENCIES = ("USD", "CDF")
ALLOWED_TYPES = ("income", "expense")
ALLOWED_GRANULARITIES = ("day", "week")

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 200

CATEGORY_NAME_MIN = 2
CATEGORY_NAME_MAX = 64

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
STRICT_ISO_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d{1,3}))?(?P<tz>Z|[+-]\d{2}:\d{2})$"
)


def is_valid_currency(value: Any) -> bool:
    return isinstance(value, str) and value in ALLOWED_CURRENCIES


def is_valid_type(value: Any) -> bool:
    return isinstance(value, str) and value in ALLOWED_TYPES


def is_valid_granularity(value: Any) -> bool:
    return isinstance(value, str) and value in ALLOWED_GRANULARITIES


def is_valid_month(value: Any) -> bool:
    # fullmatch: "$" alone would accept a trailing newline
    return isinstance(value, str) and MONTH_RE.fullmatch(value) is not None


def get_month_range(month: str) -> tuple[datetime, datetime]:
    """Half-open UTC window ``[first instant of month, first instant of next month)``."""
    year, month_num = int(month[:4]), int(month[5:7])
    start = datetime(year, month_num, 1, tzinfo=timezone.utc)
    if month_num == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month_num + 1, 1, tzinfo=timezone.utc)
    return start, end


def parse_strict_iso_date(value: Any) -> datetime | None:
    """Parse ``YYYY-MM-DDTHH:MM:SS[.fff](Z|+HH:MM)`` into an aware UTC datetime.

    Anything else (date-only strings, locale formats, naive datetimes,
    non-strings, impossible calendar values) returns ``None``.
    """
    if not isinstance(value, str):
        return None
    match = STRICT_ISO_RE.fullmatch(value)
    if match is None:
        return None
    frac = (match.group("frac") or "").ljust(6, "0")
    tz = "+00:00" if match.group("tz") == "Z" else match.group("tz")
    normalized = f"{match.group('base')}.{frac}{tz}"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    return parsed.astimezone(timezone.utc)


def parse_amount(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def normalize_category_name(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    name = value.strip()
    if len(name) < CATEGORY_NAME_MIN or len(name) > CATEGORY_NAME_MAX:
        return None
    return name


def parse_limit(value: Any) -> int | None:
    """Page size: ``DEFAULT_PAGE_LIMIT`` when absent, capped at ``MAX_PAGE_LIMIT``.

    Returns ``None`` for non-integers and values below 1.
    """
    if value is None:
        return DEFAULT_PAGE_LIMIT
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str) and re.fullmatch(r"\s*[+-]?\d+\s*", value):
        parsed = int(value)
    else:
        return None
    if parsed < 1:
        return None
    return min(parsed, MAX_PAGE_LIMIT)
