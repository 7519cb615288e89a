from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Tuple

from .timeutils import seconds_to_hms, to_12_hour


@dataclass(frozen=True)
class Track:
    """A song in the station library. Duration is already normalized to seconds."""

    id: int
    title: str = ""
    artist: str = ""
    duration_seconds: int = 0
    file_url: str = ""
    bpm: Optional[int] = None


@dataclass(frozen=True)
class Playlist:
    """Ordered list of tracks. Order is significant and owned by the caller."""

    id: Optional[int] = None
    name: str = ""
    tracks: Tuple[Track, ...] = ()
    brand: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.tracks, tuple):
            object.__setattr__(self, 'tracks', tuple(self.tracks or ()))

    @property
    def track_ids(self) -> Tuple[int, ...]:
        return tuple(t.id for t in self.tracks)

    def to_payload(self) -> Dict[str, Any]:
        """Body for the playlist store/update endpoints."""
        return {
            "name": self.name,
            "song_ids": list(self.track_ids),
        }


@dataclass(frozen=True)
class BroadcastSchedule:
    """A playlist booked for a time window on one calendar day.

    Times are canonical 24-hour "HH:mm:ss" strings; construct through
    ``radiodesk.application.scheduling.validate_schedule``.
    """

    playlist_id: int
    schedule_date: date
    start_time: str
    end_time: str
    id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "playlist_id": self.playlist_id,
            "schedule_date": self.schedule_date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


@dataclass(frozen=True)
class LiveBroadcastState:
    """Server-declared "now playing" state. Replaced wholesale, never mutated."""

    title: str
    file_url: str
    started_at: int
    duration_seconds: int = 0
    active_listener_count: int = 0

    @property
    def key(self) -> Tuple[str, int]:
        """Identity of the announced track; a new key means a new track."""
        return (self.file_url, self.started_at)


@dataclass(frozen=True)
class TimelineEntry:
    """A track together with its absolute start time (seconds since midnight)."""

    track: Track
    start_seconds: int

    @property
    def start_time(self) -> str:
        return seconds_to_hms(self.start_seconds)

    @property
    def display_start_time(self) -> str:
        return to_12_hour(self.start_time)


@dataclass(frozen=True)
class StructuralResult:
    """Outcome of an add/remove/reorder edit.

    ``changed`` is False for rejected or no-op edits; ``reason`` says why.
    ``stop_playback`` asks the caller to stop the track it is streaming.
    """

    playlist: Playlist
    timeline: Tuple[TimelineEntry, ...] = field(default_factory=tuple)
    changed: bool = False
    reason: str = ""
    stop_playback: bool = False
