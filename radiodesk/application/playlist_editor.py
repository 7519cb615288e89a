from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from radiodesk.application.listening import PlaybackSession
from radiodesk.crosscutting.logging import CorrelationContext, log_timeline_recalculated
from radiodesk.domain import timeline
from radiodesk.domain.entities import Playlist, StructuralResult, TimelineEntry, Track
from radiodesk.domain.errors import PlaylistValidationError
from radiodesk.domain.ports import RadioBackend
from radiodesk.domain.timeutils import format_total_length, to_24_hour

logger = logging.getLogger(__name__)

EDITOR_SENDER = 'playlist-editor'


class PlaylistEditor:
    """Editing surface for one playlist.

    Every structural change is applied first and then followed by a full
    timeline recalculation. Recalculations are sequence-stamped; a result
    older than the one already displayed is discarded.
    """

    def __init__(self,
                 backend: RadioBackend,
                 playlist: Optional[Playlist] = None,
                 anchor_start_time: Optional[str] = None,
                 playback: Optional[PlaybackSession] = None):
        self.backend = backend
        self.playback = playback
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._applied_sequence = 0
        self._timeline: Tuple[TimelineEntry, ...] = ()
        self.playlist = Playlist()
        self.anchor_start_time = '00:00:00'
        self.load(playlist or Playlist(), anchor_start_time)

    @property
    def timeline(self) -> Tuple[TimelineEntry, ...]:
        """The timeline currently displayed."""
        return self._timeline

    @property
    def tracks(self) -> Tuple[Track, ...]:
        return self.playlist.tracks

    @property
    def playing_track_id(self) -> Optional[int]:
        """Row streaming in the playback session, for highlighting only.

        The owner may have started it by track id (a preview) or by media
        URL (the live broadcast); both resolve to a track in this playlist.
        """
        if self.playback is None:
            return None
        current_id = self.playback.current_track_id
        current_url = self.playback.current_url
        if current_id is None and current_url is None:
            return None
        for track in self.playlist.tracks:
            if track.id == current_id:
                return track.id
        for track in self.playlist.tracks:
            if current_url and track.file_url == current_url:
                return track.id
        return None

    @property
    def total_length_seconds(self) -> int:
        return timeline.total_length_seconds(self.playlist.tracks)

    @property
    def total_length_display(self) -> str:
        return format_total_length(self.total_length_seconds)

    def compute_timeline(self) -> Tuple[int, List[TimelineEntry]]:
        """Recalculate without applying; returns (sequence, entries)."""
        with self._lock:
            seq = next(self._sequence)
            tracks = self.playlist.tracks
            anchor = self.anchor_start_time
        return seq, timeline.recalculate(anchor, tracks)

    def apply_timeline(self, sequence: int, entries: Sequence[TimelineEntry]) -> bool:
        """Display a recalculation result unless a newer one is already shown."""
        with self._lock:
            if sequence <= self._applied_sequence:
                logger.debug(f"Discarding stale timeline #{sequence} (showing #{self._applied_sequence})")
                return False
            self._applied_sequence = sequence
            self._timeline = tuple(entries)
        log_timeline_recalculated(logger, self.playlist.id, len(entries), self.anchor_start_time,
                                  sequence=sequence)
        return True

    def refresh(self) -> Tuple[TimelineEntry, ...]:
        seq, entries = self.compute_timeline()
        self.apply_timeline(seq, entries)
        return self._timeline

    def load(self, playlist: Playlist, anchor_start_time: Optional[str] = None) -> None:
        with self._lock:
            self.playlist = playlist
            if anchor_start_time is not None:
                self.anchor_start_time = to_24_hour(anchor_start_time) or '00:00:00'
        self.refresh()

    def load_from_backend(self, playlist_id: int, anchor_start_time: Optional[str] = None) -> None:
        with CorrelationContext(playlist_id=playlist_id, stage='load'):
            playlist = self.backend.get_playlist(playlist_id)
            logger.info(f"Loaded playlist {playlist.name!r} with {len(playlist.tracks)} tracks")
        self.load(playlist, anchor_start_time)

    def set_anchor(self, anchor_start_time: Optional[str]) -> None:
        with self._lock:
            self.anchor_start_time = to_24_hour(anchor_start_time) if anchor_start_time else '00:00:00'
        self.refresh()

    def rename(self, name: str) -> None:
        with self._lock:
            self.playlist = Playlist(id=self.playlist.id, name=name,
                                     tracks=self.playlist.tracks, brand=self.playlist.brand)

    def _commit(self, result: StructuralResult) -> StructuralResult:
        if result.changed:
            with self._lock:
                self.playlist = result.playlist
            self.refresh()
        return result

    def add(self, track: Track) -> StructuralResult:
        result = timeline.add_track(self.playlist, track, self.anchor_start_time)
        if not result.changed:
            logger.warning(f"Track {track.id} already in playlist")
        return self._commit(result)

    def remove(self, track_id: int) -> StructuralResult:
        removed = next((t for t in self.playlist.tracks if t.id == track_id), None)
        result = timeline.remove_track(self.playlist, track_id, self.anchor_start_time,
                                       playing_track_id=self.playing_track_id)
        if result.stop_playback and self.playback is not None:
            current_url = self.playback.current_url
            if current_url and removed is not None and removed.file_url == current_url:
                self.playback.submit('stop', sender=EDITOR_SENDER, url=current_url)
            else:
                self.playback.submit('stop', sender=EDITOR_SENDER, track_id=track_id)
        return self._commit(result)

    def move(self, from_index: int, to_index: int) -> StructuralResult:
        return self._commit(timeline.reorder(self.playlist, from_index, to_index,
                                             self.anchor_start_time))

    def request_preview(self, track_id: int) -> None:
        """Ask the playback owner to play or pause a track row."""
        if self.playback is None:
            return
        if self.playing_track_id == track_id and self.playback.is_playing:
            self.playback.submit('pause', sender=EDITOR_SENDER)
            return
        track = next((t for t in self.playlist.tracks if t.id == track_id), None)
        if track is None:
            return
        self.playback.submit('play', sender=EDITOR_SENDER, track_id=track.id, url=track.file_url)

    def payload(self) -> Dict[str, Any]:
        """Persistence body with ``song_ids`` in displayed order."""
        return self.playlist.to_payload()

    def save(self) -> Dict[str, Any]:
        """Create or update the playlist on the backend."""
        if not self.playlist.name.strip():
            raise PlaylistValidationError("Please enter a playlist name.")

        payload = self.payload()
        with CorrelationContext(playlist_id=self.playlist.id, stage='save'):
            if self.playlist.id:
                logger.info(f"Updating playlist {self.playlist.id} ({len(payload['song_ids'])} songs)")
                return self.backend.update_playlist(self.playlist.id, payload)

            logger.info(f"Creating playlist {self.playlist.name!r} ({len(payload['song_ids'])} songs)")
            response = self.backend.create_playlist(payload)
        # A new playlist form starts over once saved
        self.load(Playlist())
        return response
