from __future__ import annotations

import math
import re
from typing import Optional, Union


_DIGITS_PATTERN = re.compile(r"^\d+$", re.ASCII)
_PERIOD_TOKEN_PATTERN = re.compile(r"\b(AM|PM)\b", re.IGNORECASE)
_TWELVE_HOUR_PATTERN = re.compile(
    r"^\s*(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?\s*(AM|PM)\s*$", re.IGNORECASE | re.ASCII
)


def _parse_part(part: str) -> Optional[int]:
    part = part.strip()
    if not _DIGITS_PATTERN.match(part):
        return None
    return int(part)


def parse_duration_to_seconds(value: Union[str, int, float, None]) -> int:
    """Normalize a track length to whole seconds.

    Accepts "mm:ss", "HH:mm:ss", a digit string or a plain number. Anything
    malformed yields 0 so a bad length never reaches timeline arithmetic.
    """
    if value is None or isinstance(value, bool):
        return 0

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0
        return max(0, int(value))

    if not isinstance(value, str):
        return 0

    parts = value.strip().split(":")
    numbers = [_parse_part(p) for p in parts]
    if any(n is None for n in numbers):
        return 0

    if len(numbers) == 1:
        return numbers[0]
    if len(numbers) == 2:
        minutes, seconds = numbers
        return minutes * 60 + seconds
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return hours * 3600 + minutes * 60 + seconds
    return 0


def seconds_to_hms(seconds: Union[int, float]) -> str:
    """Render seconds as zero-padded "HH:mm:ss". Hours are not wrapped at 24."""
    if seconds is None or not math.isfinite(seconds):
        return "00:00:00"
    total = max(0, int(math.floor(seconds)))
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def to_12_hour(hms: str) -> str:
    """Convert "HH:mm[:ss]" to "hh:mm:ss AM/PM"; unparseable input is returned as-is."""
    if not hms:
        return "12:00:00 AM"

    parts = hms.strip().split(":")
    if len(parts) < 2:
        return hms

    hours = _parse_part(parts[0])
    if hours is None:
        return hms

    minutes = parts[1].strip().zfill(2)
    seconds = parts[2].strip().zfill(2) if len(parts) > 2 and parts[2].strip() else "00"

    period = "PM" if hours >= 12 else "AM"
    hours = hours % 12
    if hours == 0:
        hours = 12

    return f"{hours:02d}:{minutes}:{seconds} {period}"


def to_24_hour(text: str) -> str:
    """Convert "hh:mm[:ss] AM/PM" to canonical "HH:mm:ss".

    Input without an AM/PM token is already canonical and comes back
    unchanged, as does input whose time part cannot be read.
    """
    if not text:
        return "00:00:00"

    if not _PERIOD_TOKEN_PATTERN.search(text):
        return text

    match = _TWELVE_HOUR_PATTERN.match(text)
    if not match:
        return text

    hours = int(match.group(1))
    minutes = int(match.group(2))
    seconds = int(match.group(3)) if match.group(3) is not None else 0
    period = match.group(4).upper()

    if not 1 <= hours <= 12 or minutes > 59 or seconds > 59:
        return text

    if period == "PM" and hours != 12:
        hours += 12
    elif period == "AM" and hours == 12:
        hours = 0

    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_clock_to_seconds(text: Union[str, int, None]) -> Optional[int]:
    """Seconds since midnight for a time of day, or None when absent or malformed.

    "09:00" means nine o'clock here, not nine minutes: a two part value is
    hours and minutes. 12-hour input is converted first.
    """
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text if text >= 0 else None
    if not isinstance(text, str) or not text.strip():
        return None

    parts = to_24_hour(text.strip()).split(":")
    if len(parts) not in (2, 3):
        return None

    numbers = [_parse_part(p) for p in parts]
    if any(n is None for n in numbers):
        return None

    hours, minutes = numbers[0], numbers[1]
    seconds = numbers[2] if len(numbers) == 3 else 0
    if minutes > 59 or seconds > 59:
        return None
    return hours * 3600 + minutes * 60 + seconds


def format_clock(seconds: Union[int, float, None]) -> str:
    """Player position as "mm:ss"."""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "00:00"
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


def format_total_length(seconds: Union[int, float]) -> str:
    total = max(0, int(seconds))
    hours = total // 3600
    minutes = (total % 3600) // 60
    return f"{hours} hrs {minutes} mins"
