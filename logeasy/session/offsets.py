"""UTC offset parsing and formatting.

Offsets reach us as cookies (``+0530``), JSON fields (``"+5:30"``, ``"UTC"``) or
bare hour counts (``"-4"``). Everything is normalized to a signed 4-digit form.
"""

import re

_OFFSET_PATTERN = re.compile(r"^([+-])?(\d{1,2})(?::?(\d{2}))?$")

MAX_OFFSET_HOURS = 14


def normalize_utc_offset(value: object) -> str | None:
    """Normalize an offset to ``+HHMM`` / ``-HHMM``.

    Returns None for empty or unparseable values, and for hours above 14 or
    minutes of 60 or more.

    >>> normalize_utc_offset("+5:30")
    '+0530'
    >>> normalize_utc_offset("UTC")
    '+0000'
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.upper() in ("UTC", "Z"):
        return "+0000"

    match = _OFFSET_PATTERN.match(text)
    if not match:
        return None

    sign = "-" if match.group(1) == "-" else "+"
    hours = int(match.group(2))
    minutes = int(match.group(3)) if match.group(3) else 0
    if hours > MAX_OFFSET_HOURS or minutes >= 60:
        return None
    return f"{sign}{hours:02d}{minutes:02d}"


def offset_to_minutes(offset: object) -> int:
    """Signed minutes east of UTC. Unparseable offsets count as UTC."""
    normalized = normalize_utc_offset(offset)
    if normalized is None:
        return 0
    sign = -1 if normalized[0] == "-" else 1
    return sign * (int(normalized[1:3]) * 60 + int(normalized[3:5]))


def format_utc_offset_label(offset: object) -> str:
    """Human label such as ``UTC+05:30``; plain ``UTC`` when unparseable."""
    normalized = normalize_utc_offset(offset)
    if normalized is None:
        return "UTC"
    return f"UTC{normalized[0]}{normalized[1:3]}:{normalized[3:5]}"
