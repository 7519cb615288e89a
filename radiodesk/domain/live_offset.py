from __future__ import annotations

from typing import Union


Number = Union[int, float]


def compute_offset_seconds(now_epoch_seconds: Number, started_at_epoch_seconds: Number) -> Number:
    """Seek position for a listener joining a broadcast that started at ``started_at``.

    A start time in the future (clock skew) clamps to 0.
    """
    return max(0, now_epoch_seconds - started_at_epoch_seconds)


def has_ended(offset_seconds: Number, duration_seconds: Number) -> bool:
    """True once the offset reaches the track duration.

    An unknown (0) duration never ends here; the media player's own
    end-of-stream event covers that case.
    """
    return duration_seconds > 0 and offset_seconds >= duration_seconds


def remaining_seconds(offset_seconds: Number, duration_seconds: Number) -> Number:
    """Seconds left in the track, or 0 when the duration is unknown or passed."""
    if duration_seconds <= 0:
        return 0
    return max(0, duration_seconds - offset_seconds)
