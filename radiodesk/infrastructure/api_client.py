import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from radiodesk.domain.entities import BroadcastSchedule, Playlist, Track
from radiodesk.domain.errors import (
    NotFound, PermanentFailure, RateLimited, TemporaryFailure, Unauthorized
)
from radiodesk.domain.ports import RadioBackend
from radiodesk.domain.timeutils import parse_duration_to_seconds

logger = logging.getLogger(__name__)


class Routes:
    """Backend endpoint paths."""

    NOW_PLAYING = '/now-playing'
    LOGIN = '/login'

    PLAYLIST_LIST = '/playlist/list'
    PLAYLIST_VIEW = '/playlist/view'
    PLAYLIST_ADD = '/playlist/store'
    PLAYLIST_UPDATE = '/playlist/update'
    PLAYLIST_DELETE = '/playlist/delete'

    SONGS_LIST = '/songs/list'
    CATEGORY_LIST = '/category/list'

    SCHEDULE_ADD = '/schedule/store'
    SCHEDULE_UPDATE = '/schedule/update'
    SCHEDULE_DELETE = '/schedule/delete'
    SCHEDULE_TODAY = '/schedule/today'
    SCHEDULE_LIST = '/schedule/list'
    SCHEDULE_VIEW = '/schedule/view'


def _optional_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None and value != '' else None
    except (TypeError, ValueError):
        return None


def song_to_track(song: Dict[str, Any]) -> Track:
    """Convert a backend song object to a domain Track.

    ``length`` arrives as "m:ss", "H:mm:ss" or a number of seconds and is
    normalized here, once, at the ingestion boundary.
    """
    return Track(
        id=int(song['id']),
        title=song.get('title') or '',
        artist=song.get('artist') or '',
        duration_seconds=parse_duration_to_seconds(song.get('length')),
        file_url=song.get('file_url') or '',
        bpm=_optional_int(song.get('bpm')),
    )


def playlist_from_payload(data: Dict[str, Any]) -> Playlist:
    songs = data.get('songs') or []
    return Playlist(
        id=_optional_int(data.get('id')),
        name=data.get('name') or '',
        tracks=tuple(song_to_track(s) for s in songs if s and s.get('id') is not None),
        brand=data.get('brand'),
    )


def schedule_from_payload(data: Dict[str, Any]) -> BroadcastSchedule:
    return BroadcastSchedule(
        id=_optional_int(data.get('id')),
        playlist_id=int(data['playlist_id']),
        schedule_date=date.fromisoformat(str(data['schedule_date'])[:10]),
        start_time=data.get('start_time') or '',
        end_time=data.get('end_time') or '',
    )


class RadioApiClient(RadioBackend):
    """HTTP adapter for the station backend implementing the RadioBackend port."""

    def __init__(self,
                 base_url: str,
                 token: Optional[str] = None,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        """Initialize the client.

        Args:
            base_url: API root, e.g. ``https://radio.example.com/api``
            token: Bearer token sent on every request, if any
            timeout: Per-request timeout in seconds
            session: Pre-configured ``requests.Session`` (tests pass a mock)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })
        self.set_token(token)

    def set_token(self, token: Optional[str]) -> None:
        self.token = token
        if token:
            self._session.headers['Authorization'] = f'Bearer {token}'
        else:
            self._session.headers.pop('Authorization', None)

    def _raise_for_status(self, response: requests.Response, path: str) -> None:
        status = response.status_code
        if status < 400:
            return

        message = self._error_message(response)
        if status in (401, 403):
            raise Unauthorized(f"{path}: {message}")
        if status == 404:
            raise NotFound(f"{path}: {message}")
        if status == 429:
            retry_after = response.headers.get('Retry-After', '1')
            try:
                retry_after_ms = int(float(retry_after) * 1000)
            except ValueError:
                retry_after_ms = 1000
            raise RateLimited(retry_after_ms=retry_after_ms, message=f"{path}: {message}")
        if status >= 500:
            raise TemporaryFailure(f"{path}: HTTP {status} {message}")
        raise PermanentFailure(f"{path}: HTTP {status} {message}")

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return (response.text or '').strip()[:200]
        if isinstance(data, dict):
            return str(data.get('message') or data.get('error') or data)
        return str(data)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise TemporaryFailure(f"Timed out calling {path}: {e}")
        except requests.exceptions.RequestException as e:
            raise TemporaryFailure(f"Failed to call {path}: {e}")

        self._raise_for_status(response, path)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TemporaryFailure(f"Invalid JSON from {path}: {e}")

    def login(self, email: str, password: str) -> str:
        """Exchange credentials for a bearer token and start using it."""
        data = self._request('POST', Routes.LOGIN, json={'email': email, 'password': password})
        token = None
        if isinstance(data, dict):
            token = data.get('token') or data.get('access_token')
        if not token:
            raise PermanentFailure("Login response did not contain a token")
        self.set_token(token)
        return token

    def now_playing(self) -> Dict[str, Any]:
        data = self._request('GET', Routes.NOW_PLAYING)
        return data if isinstance(data, dict) else {}

    def list_playlists(self) -> List[Playlist]:
        data = self._request('GET', Routes.PLAYLIST_LIST)
        return [playlist_from_payload(p) for p in (data.get('playlists') or [])]

    def get_playlist(self, playlist_id: int) -> Playlist:
        data = self._request('GET', f"{Routes.PLAYLIST_VIEW}/{playlist_id}")
        playlist = data.get('playlist')
        if not playlist:
            raise NotFound(f"Playlist {playlist_id} not found")
        return playlist_from_payload(playlist)

    def create_playlist(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', Routes.PLAYLIST_ADD, json=payload)

    def update_playlist(self, playlist_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', f"{Routes.PLAYLIST_UPDATE}/{playlist_id}", json=payload)

    def delete_playlist(self, playlist_id: int) -> None:
        self._request('DELETE', f"{Routes.PLAYLIST_DELETE}/{playlist_id}")

    def list_songs(self, category_id: Optional[int] = None, search: Optional[str] = None) -> List[Track]:
        params = {}
        if category_id is not None:
            params['category_id'] = category_id
        if search:
            params['search'] = search
        data = self._request('GET', Routes.SONGS_LIST, params=params)
        return [song_to_track(s) for s in (data.get('songs') or [])]

    def list_categories(self) -> List[Dict[str, Any]]:
        data = self._request('GET', Routes.CATEGORY_LIST)
        return list(data.get('category') or [])

    def create_schedule(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request('POST', Routes.SCHEDULE_ADD, json=payload)

    def update_schedule(self, schedule_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(payload, id=schedule_id)
        return self._request('POST', f"{Routes.SCHEDULE_UPDATE}/{schedule_id}", json=body)

    def delete_schedule(self, schedule_id: int) -> None:
        self._request('DELETE', f"{Routes.SCHEDULE_DELETE}/{schedule_id}")

    def list_schedules(self) -> List[BroadcastSchedule]:
        data = self._request('GET', Routes.SCHEDULE_LIST)
        if isinstance(data, list):
            rows = data
        else:
            rows = data.get('schedules') or data.get('schedule') or []
        return [schedule_from_payload(r) for r in rows]

    def get_schedule(self, schedule_id: int) -> Dict[str, Any]:
        return self._request('GET', f"{Routes.SCHEDULE_VIEW}/{schedule_id}")

    def today_schedule(self) -> Dict[str, Any]:
        return self._request('GET', Routes.SCHEDULE_TODAY)
