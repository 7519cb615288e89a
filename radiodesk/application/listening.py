from __future__ import annotations

import logging
import math
import queue
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from radiodesk.crosscutting.config import DEFAULT_POLL_INTERVAL
from radiodesk.crosscutting.logging import CorrelationContext, log_broadcast_change, log_error
from radiodesk.domain.entities import LiveBroadcastState
from radiodesk.domain.errors import (
    MediaPlaybackError, NotFound, PlaybackOwnershipError, RateLimited, TemporaryFailure
)
from radiodesk.domain.live_offset import compute_offset_seconds, has_ended
from radiodesk.domain.ports import MediaPlayer, RadioBackend
from radiodesk.domain.timeutils import parse_duration_to_seconds

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"^\d+$", re.ASCII)
_REQUIRED_FIELDS = ('title', 'file_url', 'started_at', 'duration')


def _int_like(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str) and _INT_PATTERN.match(value.strip()):
        return int(value.strip())
    return None


def parse_broadcast_state(payload: Optional[Dict[str, Any]]) -> Optional[LiveBroadcastState]:
    """Turn a now-playing poll result into a broadcast state.

    Returns None ("no live broadcast") when any required field is missing
    or empty, rather than filling in zero values that would look live.
    """
    if not isinstance(payload, dict):
        return None
    if any(payload.get(name) in (None, '') for name in _REQUIRED_FIELDS):
        return None

    title = payload['title']
    file_url = payload['file_url']
    if not isinstance(title, str) or not isinstance(file_url, str):
        return None

    started_at = _int_like(payload['started_at'])
    if started_at is None or started_at <= 0:
        return None

    listeners = _int_like(payload.get('active_user_count'))

    return LiveBroadcastState(
        title=title,
        file_url=file_url,
        started_at=started_at,
        duration_seconds=parse_duration_to_seconds(payload['duration']),
        active_listener_count=max(0, listeners or 0),
    )


class BroadcastStateCache:
    """Holds the latest broadcast state. The last applied state always wins."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state: Optional[LiveBroadcastState] = None
        self._version = 0
        self._stale = True

    @property
    def current(self) -> Optional[LiveBroadcastState]:
        return self._state

    @property
    def version(self) -> int:
        """Bumped every time the announced track changes."""
        return self._version

    @property
    def stale(self) -> bool:
        return self._stale

    def apply(self, state: Optional[LiveBroadcastState]) -> bool:
        """Replace the cached state; return True if the announced track changed."""
        with self._lock:
            old_key = self._state.key if self._state else None
            new_key = state.key if state else None
            self._state = state
            self._stale = False
            if old_key != new_key:
                self._version += 1
                return True
            return False

    def invalidate(self) -> None:
        """Mark the cached state stale; the next poll refetches it."""
        with self._lock:
            self._stale = True


@dataclass(frozen=True)
class PlaybackRequest:
    """A message asking the owner of a playback session to act."""

    command: str
    sender: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)


class PlaybackSession:
    """The single physical playback resource, owned by one component at a time.

    The owner drives the player directly. Everyone else may only read
    ``current_track_id``/``current_url`` and ``submit`` requests, which the
    owner applies with ``dispatch``.
    """

    COMMANDS = ('play', 'pause', 'seek', 'stop')

    def __init__(self, player: MediaPlayer):
        self._player = player
        self._owner: Optional[str] = None
        self._lock = threading.RLock()
        self._requests: "queue.Queue[PlaybackRequest]" = queue.Queue()
        self._current_track_id: Optional[Any] = None
        self._current_url: Optional[str] = None
        self._playing = False

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    @property
    def current_track_id(self) -> Optional[Any]:
        return self._current_track_id

    @property
    def current_url(self) -> Optional[str]:
        """Media resource loaded by the last ``play``."""
        return self._current_url

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def pending_requests(self) -> int:
        return self._requests.qsize()

    def acquire(self, owner: str) -> None:
        with self._lock:
            if self._owner is not None and self._owner != owner:
                raise PlaybackOwnershipError(f"Playback session is owned by {self._owner}")
            self._owner = owner

    def release(self, owner: str) -> None:
        with self._lock:
            self._check_owner(owner)
            self._owner = None

    def _check_owner(self, owner: str) -> None:
        if owner != self._owner:
            raise PlaybackOwnershipError(f"{owner} does not own the playback session")

    def play(self, owner: str, track_id: Any, url: Optional[str] = None, offset: float = 0.0) -> None:
        """Load ``url`` if given, seek to ``offset`` and start playing."""
        with self._lock:
            self._check_owner(owner)
            self._playing = False
            if url:
                self._player.load(url)
                self._current_url = url
            self._player.seek(max(0.0, offset))
            self._player.play()
            self._current_track_id = track_id
            self._playing = True

    def pause(self, owner: str) -> None:
        with self._lock:
            self._check_owner(owner)
            self._player.pause()
            self._playing = False

    def seek(self, owner: str, seconds: float) -> None:
        with self._lock:
            self._check_owner(owner)
            self._player.seek(max(0.0, seconds))

    def stop(self, owner: str) -> None:
        with self._lock:
            self._check_owner(owner)
            self._player.stop()
            self._current_track_id = None
            self._current_url = None
            self._playing = False

    def submit(self, command: str, sender: Optional[str] = None, **args) -> PlaybackRequest:
        """Queue a request for the owner. Safe to call from any component or thread."""
        if command not in self.COMMANDS:
            raise ValueError(f"Unknown playback command: {command}")
        request = PlaybackRequest(command=command, sender=sender, args=args)
        self._requests.put(request)
        return request

    def dispatch(self, owner: str) -> int:
        """Apply queued requests in arrival order; return how many were applied."""
        self._check_owner(owner)
        applied = 0
        while True:
            try:
                request = self._requests.get_nowait()
            except queue.Empty:
                break
            if self._apply(owner, request):
                applied += 1
        return applied

    def _is_current(self, args: Dict[str, Any]) -> bool:
        if args.get('url') is not None:
            return args['url'] == self._current_url
        if args.get('track_id') is not None:
            return args['track_id'] == self._current_track_id
        return True

    def _apply(self, owner: str, request: PlaybackRequest) -> bool:
        args = request.args
        if request.command == 'stop':
            # A targeted stop only applies if that track is still current
            if not self._is_current(args):
                return False
            self.stop(owner)
        elif request.command == 'pause':
            self.pause(owner)
        elif request.command == 'seek':
            self.seek(owner, float(args.get('seconds', 0.0)))
        elif request.command == 'play':
            self.play(owner, args.get('track_id'), args.get('url'), float(args.get('offset', 0.0)))
        logger.debug(f"Applied playback request {request.command} from {request.sender}")
        return True


class SessionState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    PLAYING = "playing"


class ListeningSession:
    """One listener following the live broadcast.

    The seek offset is computed when the listener starts (or resumes) and
    when a new track is announced mid-play; it is not recomputed on a
    timer, the player keeps its own clock between those points.
    """

    OWNER = 'listening-session'

    def __init__(self,
                 playback: PlaybackSession,
                 clock: Callable[[], float] = time.time,
                 on_track_ended: Optional[Callable[[], None]] = None):
        self.playback = playback
        self._clock = clock
        self._on_track_ended = on_track_ended
        self.state = SessionState.IDLE
        self.broadcast: Optional[LiveBroadcastState] = None
        self.last_offset: Optional[float] = None
        self.last_error: Optional[BaseException] = None
        playback.acquire(self.OWNER)

    def on_broadcast(self, state: Optional[LiveBroadcastState]) -> bool:
        """Apply a broadcast state from a poll or push; return True if the track changed."""
        if state is None or not state.file_url:
            if self.broadcast is None:
                return False
            if self.state == SessionState.PLAYING:
                self.playback.stop(self.OWNER)
            self.broadcast = None
            self.state = SessionState.IDLE
            return True

        if self.broadcast is not None and state.key == self.broadcast.key:
            self.broadcast = state
            return False

        self.broadcast = state
        if self.state == SessionState.PLAYING:
            # New track pushed while listening: it starts now, from the top
            self._play(0)
        else:
            self.state = SessionState.READY
        return True

    def start(self) -> Optional[float]:
        """User gesture: join the broadcast at the live position.

        Returns the offset seeked to, or None if nothing was started
        (no track, already playing, or the track has already finished).
        """
        if self.state != SessionState.READY or self.broadcast is None:
            return None

        offset = compute_offset_seconds(self._clock(), self.broadcast.started_at)
        if has_ended(offset, self.broadcast.duration_seconds):
            logger.info(f"Track '{self.broadcast.title}' already finished, waiting for the next one")
            self._track_ended()
            return None

        self._play(offset)
        return offset

    def pause(self) -> None:
        """User gesture: pause. The next start re-syncs to the live position."""
        if self.state == SessionState.PLAYING:
            self.playback.pause(self.OWNER)
            self.state = SessionState.READY

    def on_media_ended(self) -> None:
        """The player reached the end of the current track."""
        if self.state == SessionState.PLAYING:
            self._track_ended()

    def on_media_error(self, error: BaseException) -> None:
        """The player failed. Back to READY so the listener can retry; the error is raised."""
        self.state = SessionState.READY
        self.last_error = error
        with CorrelationContext(session_id=self.OWNER, stage='playback'):
            log_error(logger, "Media playback failed", error,
                      file_url=self.broadcast.file_url if self.broadcast else None)
        raise MediaPlaybackError(str(error)) from error

    def process_requests(self) -> int:
        """Apply play/pause/seek/stop requests other components submitted.

        Returns how many were applied. A stop or pause leaves the session
        READY, so the next ``start`` re-joins the live position.
        """
        try:
            applied = self.playback.dispatch(self.OWNER)
        except PlaybackOwnershipError:
            raise
        except Exception as e:
            self.on_media_error(e)
        if applied:
            if self.playback.is_playing:
                self.state = SessionState.PLAYING
            elif self.state == SessionState.PLAYING:
                self.state = SessionState.READY if self.broadcast else SessionState.IDLE
        return applied

    def close(self) -> None:
        if self.state == SessionState.PLAYING:
            self.playback.stop(self.OWNER)
        self.state = SessionState.IDLE
        self.playback.release(self.OWNER)

    def _play(self, offset: float) -> None:
        try:
            self.playback.play(self.OWNER, track_id=self.broadcast.file_url,
                               url=self.broadcast.file_url, offset=offset)
        except PlaybackOwnershipError:
            raise
        except Exception as e:
            self.on_media_error(e)
        self.state = SessionState.PLAYING
        self.last_offset = offset
        self.last_error = None

    def _track_ended(self) -> None:
        self.state = SessionState.IDLE
        if self._on_track_ended:
            self._on_track_ended()


class BroadcastMonitor:
    """Polls now-playing and feeds changes into the cache and the listening session.

    ``invalidate`` may be called at any time by an external notifier; it
    wakes the loop for an immediate refetch.
    """

    def __init__(self,
                 backend: RadioBackend,
                 cache: Optional[BroadcastStateCache] = None,
                 session: Optional[ListeningSession] = None,
                 interval: float = DEFAULT_POLL_INTERVAL):
        self.backend = backend
        self.cache = cache or BroadcastStateCache()
        self.session = session
        self.interval = interval
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._next_wait = interval

    def poll_once(self) -> Optional[LiveBroadcastState]:
        self._next_wait = self.interval
        try:
            payload = self.backend.now_playing()
        except NotFound:
            payload = None
        except RateLimited as e:
            logger.warning(f"Now-playing poll rate limited, retrying in {e.retry_after_ms}ms")
            self._next_wait = max(self.interval, e.retry_after_ms / 1000.0)
            return self.cache.current
        except TemporaryFailure as e:
            logger.warning(f"Now-playing poll failed: {e}")
            return self.cache.current

        state = parse_broadcast_state(payload)
        if self.cache.apply(state):
            log_broadcast_change(logger, state.title if state else None,
                                 state.started_at if state else None,
                                 version=self.cache.version)
            if self.session is not None:
                self.session.on_broadcast(state)
        elif self.session is not None and state is not None:
            # Same track; keeps listener count fresh
            self.session.on_broadcast(state)
        return state

    def invalidate(self) -> None:
        self.cache.invalidate()
        self._wake.set()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()

    def run(self, max_polls: Optional[int] = None,
            after_poll: Optional[Callable[[Optional[LiveBroadcastState]], None]] = None) -> int:
        """Poll until ``stop`` is called (or ``max_polls`` is reached); return the poll count.

        ``after_poll`` receives each poll result, e.g. to resume a listener.
        """
        polls = 0
        while not self._stop.is_set():
            try:
                if self.session is not None:
                    self.session.process_requests()
                state = self.poll_once()
                if after_poll is not None:
                    after_poll(state)
            except MediaPlaybackError as e:
                logger.warning(f"Playback error after broadcast change: {e}")
            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            self._wake.wait(self._next_wait)
            self._wake.clear()
        return polls
