from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Union

from .entities import Playlist, StructuralResult, TimelineEntry, Track
from .timeutils import parse_clock_to_seconds


Anchor = Union[str, int, None]


def anchor_to_seconds(anchor_start_time: Anchor) -> int:
    """Seconds since midnight for an anchor; absent or malformed anchors mean midnight."""
    seconds = parse_clock_to_seconds(anchor_start_time)
    return seconds if seconds is not None else 0


def recalculate(anchor_start_time: Anchor, tracks: Iterable[Track]) -> List[TimelineEntry]:
    """Assign an absolute start time to every track, in order.

    Must be re-run from scratch after every add, remove, reorder or anchor
    change. The accumulator is not wrapped at midnight.
    """
    current = anchor_to_seconds(anchor_start_time)
    entries: List[TimelineEntry] = []
    for track in tracks:
        entries.append(TimelineEntry(track=track, start_seconds=current))
        current += max(0, track.duration_seconds)
    return entries


def total_length_seconds(tracks: Iterable[Track]) -> int:
    return sum(max(0, t.duration_seconds) for t in tracks)


def end_seconds(anchor_start_time: Anchor, tracks: Iterable[Track]) -> int:
    """Seconds since midnight at which the last track finishes."""
    return anchor_to_seconds(anchor_start_time) + total_length_seconds(tracks)


def _result(playlist: Playlist, anchor_start_time: Anchor, changed: bool, reason: str,
            stop_playback: bool = False) -> StructuralResult:
    return StructuralResult(
        playlist=playlist,
        timeline=tuple(recalculate(anchor_start_time, playlist.tracks)),
        changed=changed,
        reason=reason,
        stop_playback=stop_playback,
    )


def add_track(playlist: Playlist, track: Track, anchor_start_time: Anchor = None) -> StructuralResult:
    """Append a track unless its id is already in the playlist."""
    if track.id in playlist.track_ids:
        return _result(playlist, anchor_start_time, False, "duplicate")
    updated = replace(playlist, tracks=playlist.tracks + (track,))
    return _result(updated, anchor_start_time, True, "added")


def remove_track(playlist: Playlist, track_id: int, anchor_start_time: Anchor = None,
                 playing_track_id: Optional[int] = None) -> StructuralResult:
    """Remove a track by id.

    When the removed track is ``playing_track_id`` the result carries
    ``stop_playback``; stopping it is up to the caller.
    """
    if track_id not in playlist.track_ids:
        return _result(playlist, anchor_start_time, False, "absent")
    remaining = tuple(t for t in playlist.tracks if t.id != track_id)
    updated = replace(playlist, tracks=remaining)
    stop = playing_track_id is not None and playing_track_id == track_id
    return _result(updated, anchor_start_time, True, "removed", stop_playback=stop)


def move(items: Sequence, from_index: int, to_index: int) -> list:
    """Array move: take the item at from_index and insert it at to_index."""
    moved = list(items)
    item = moved.pop(from_index)
    moved.insert(to_index, item)
    return moved


def reorder(playlist: Playlist, from_index: int, to_index: int,
            anchor_start_time: Anchor = None) -> StructuralResult:
    """Move one track (drag-and-drop drop event) and recompute the timeline."""
    size = len(playlist.tracks)
    if not (0 <= from_index < size and 0 <= to_index < size):
        return _result(playlist, anchor_start_time, False, "out_of_range")
    if from_index == to_index:
        return _result(playlist, anchor_start_time, False, "noop")
    updated = replace(playlist, tracks=tuple(move(playlist.tracks, from_index, to_index)))
    return _result(updated, anchor_start_time, True, "moved")
