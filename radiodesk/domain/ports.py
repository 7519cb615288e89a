from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from .entities import BroadcastSchedule, Playlist, Track


class RadioBackend(Protocol):
    """Port for the station REST backend.

    Implementations map wire payloads into domain entities and raise the
    errors from ``radiodesk.domain.errors``.
    """

    def now_playing(self) -> Dict[str, Any]:
        """Return the raw broadcast-state poll result."""

    def list_playlists(self) -> List[Playlist]:
        """Return all playlists (tracks may be omitted)."""

    def get_playlist(self, playlist_id: int) -> Playlist:
        """Return one playlist with its ordered tracks."""

    def create_playlist(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a new playlist from a ``{name, song_ids}`` payload."""

    def update_playlist(self, playlist_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Replace name and track order of an existing playlist."""

    def delete_playlist(self, playlist_id: int) -> None:
        """Delete a playlist."""

    def list_songs(self, category_id: Optional[int] = None, search: Optional[str] = None) -> List[Track]:
        """Return library tracks, optionally filtered."""

    def create_schedule(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a new broadcast schedule."""

    def update_schedule(self, schedule_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an existing broadcast schedule."""

    def delete_schedule(self, schedule_id: int) -> None:
        """Delete a broadcast schedule."""

    def list_schedules(self) -> List[BroadcastSchedule]:
        """Return all broadcast schedules."""

    def get_schedule(self, schedule_id: int) -> Dict[str, Any]:
        """Return one schedule with its playlist."""

    def today_schedule(self) -> Dict[str, Any]:
        """Return today's schedule payload (playlist and time window)."""


class MediaPlayer(Protocol):
    """The physical playback resource (an audio element, a decoder, ...)."""

    def load(self, url: str) -> None:
        """Point the player at a new media resource."""

    def seek(self, seconds: float) -> None:
        """Move the playhead."""

    def play(self) -> None:
        """Start or resume playback. May raise on media failure."""

    def pause(self) -> None:
        """Pause playback, keeping the position."""

    def stop(self) -> None:
        """Stop playback and drop the position."""
