"""Display formatting for amounts, percentages and backend dates."""

from datetime import date, datetime
from typing import Optional, Union

MISSING = "—"

DateLike = Union[date, str, list, tuple, None]


def _group_indian(integer_part: str) -> str:
    """Group digits the en-IN way: last three, then pairs (12,34,567)."""
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def format_number(value: Optional[float], decimals: int = 2) -> str:
    """Format a number with Indian digit grouping and fixed decimals."""
    if value is None or value != value:
        return MISSING
    text = f"{abs(value):.{decimals}f}"
    if "." in text:
        integer_part, fraction = text.split(".")
        grouped = f"{_group_indian(integer_part)}.{fraction}"
    else:
        grouped = _group_indian(text)
    sign = "-" if value < 0 and float(text) != 0 else ""
    return f"{sign}{grouped}"


def format_currency(value: Optional[float], decimals: int = 0) -> str:
    """Format an INR amount, e.g. ``₹1,23,457``."""
    if value is None or value != value:
        return MISSING
    formatted = format_number(value, decimals)
    if formatted.startswith("-"):
        return f"-₹{formatted[1:]}"
    return f"₹{formatted}"


def format_percentage(value: Optional[float], decimals: int = 2) -> str:
    """Format a signed percentage, e.g. ``+12.34%``."""
    if value is None or value != value:
        return MISSING
    sign = "+" if value >= 0 else ""
    return f"{sign}{format_number(value, decimals)}%"


def parse_date(value: DateLike) -> Optional[date]:
    """Parse a backend date.

    The backend serialises dates either as ``[year, month, day]`` arrays
    or as ISO strings; anything else yields None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (list, tuple)):
        if len(value) < 3:
            return None
        try:
            return date(int(value[0]), int(value[1]), int(value[2]))
        except (TypeError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text[:10]).date()
        except ValueError:
            return None
    return None


def format_date(value: DateLike) -> str:
    """Format a backend date as ``05 Mar 2024``."""
    parsed = parse_date(value)
    if parsed is None:
        return "N/A"
    return parsed.strftime("%d %b %Y")
