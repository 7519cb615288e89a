import os
import time
from typing import Any, Callable, Dict, Optional
from datetime import datetime
from flask import Flask, request, jsonify

from radiodesk.application.listening import parse_broadcast_state
from radiodesk.application.scheduling import validate_schedule
from radiodesk.crosscutting.config import get_settings_manager
from radiodesk.crosscutting.logging import get_logger
from radiodesk.domain import timeline
from radiodesk.domain.entities import TimelineEntry
from radiodesk.domain.errors import (
    NotFound, PermanentFailure, RateLimited, ScheduleValidationError, TemporaryFailure
)
from radiodesk.domain.live_offset import compute_offset_seconds, has_ended, remaining_seconds
from radiodesk.domain.ports import RadioBackend
from radiodesk.domain.timeutils import format_clock, format_total_length, seconds_to_hms
from radiodesk.infrastructure.api_client import RadioApiClient, song_to_track


def _entry_to_dict(entry: TimelineEntry) -> Dict[str, Any]:
    track = entry.track
    return {
        'id': track.id,
        'title': track.title,
        'artist': track.artist,
        'duration': track.duration_seconds,
        'start_time': entry.start_time,
        'display_start_time': entry.display_start_time,
    }


def _timeline_response(anchor: str, tracks) -> Dict[str, Any]:
    entries = timeline.recalculate(anchor, tracks)
    total = timeline.total_length_seconds(tracks)
    return {
        'start_time': seconds_to_hms(timeline.anchor_to_seconds(anchor)),
        'end_time': seconds_to_hms(timeline.end_seconds(anchor, tracks)),
        'total_length': format_total_length(total),
        'total_seconds': total,
        'tracks': [_entry_to_dict(e) for e in entries],
    }


class HTTPServer:
    """HTTP server for radiodesk: health checks, live broadcast state and timelines."""

    def __init__(self,
                 host: str = 'localhost',
                 port: int = 3000,
                 debug: bool = False,
                 backend: Optional[RadioBackend] = None,
                 clock: Callable[[], float] = time.time):
        """Initialize HTTP server."""
        self.host = host
        self.port = port
        self.debug = debug
        self.app = Flask(__name__)
        self.logger = get_logger(__name__)
        self.clock = clock
        self._backend = backend

        # Version info
        self.version = "0.1.0"
        self.commit = os.getenv('GIT_COMMIT', 'unknown')

        self._setup_routes()

    @property
    def backend(self) -> RadioBackend:
        """Backend client, created from configuration on first use."""
        if self._backend is None:
            self._backend = RadioApiClient(**get_settings_manager().get_api_config())
        return self._backend

    def _upstream_error(self, e: Exception):
        if isinstance(e, RateLimited):
            self.logger.warning(f"Backend rate limited: {e}")
            response = jsonify({'error': 'Backend rate limited', 'details': str(e)})
            response.headers['Retry-After'] = str(max(1, e.retry_after_ms // 1000))
            return response, 503
        if isinstance(e, TemporaryFailure):
            self.logger.warning(f"Backend unavailable: {e}")
            return jsonify({'error': 'Backend unavailable', 'details': str(e)}), 503
        self.logger.error(f"Backend request failed: {e}")
        return jsonify({'error': 'Backend request failed', 'details': str(e)}), 502

    def _setup_routes(self) -> None:
        """Setup Flask routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/now-playing', methods=['GET'])
        def now_playing():
            """Live broadcast state with the offset a listener joining now would seek to."""
            try:
                payload = self.backend.now_playing()
            except NotFound:
                payload = None
            except (RateLimited, TemporaryFailure, PermanentFailure) as e:
                return self._upstream_error(e)

            state = parse_broadcast_state(payload)
            if state is None:
                return jsonify({'live': False}), 200

            offset = compute_offset_seconds(self.clock(), state.started_at)
            return jsonify({
                'live': True,
                'title': state.title,
                'file_url': state.file_url,
                'started_at': state.started_at,
                'duration': state.duration_seconds,
                'offset': offset,
                'offset_display': format_clock(offset),
                'remaining': remaining_seconds(offset, state.duration_seconds),
                'has_ended': has_ended(offset, state.duration_seconds),
                'active_user_count': state.active_listener_count,
            }), 200

        @self.app.route('/playlists/<int:playlist_id>/timeline', methods=['GET'])
        def playlist_timeline(playlist_id: int):
            """Per-track start times of a stored playlist."""
            anchor = request.args.get('start') or '00:00:00'
            try:
                playlist = self.backend.get_playlist(playlist_id)
            except NotFound:
                return jsonify({'error': f'Playlist {playlist_id} not found'}), 404
            except (RateLimited, TemporaryFailure, PermanentFailure) as e:
                return self._upstream_error(e)

            body = _timeline_response(anchor, playlist.tracks)
            body.update({'playlist_id': playlist.id, 'name': playlist.name})
            return jsonify(body), 200

        @self.app.route('/timeline', methods=['POST'])
        def compute_timeline():
            """Timeline for an ad hoc list of songs: {"start_time": ..., "songs": [...]}"""
            data = request.get_json(silent=True)
            if not isinstance(data, dict) or not isinstance(data.get('songs'), list):
                return jsonify({'error': 'Expected a JSON object with a "songs" list'}), 400
            try:
                tracks = [song_to_track(s) for s in data['songs']]
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                return jsonify({'error': 'Invalid song entry', 'details': str(e)}), 400

            return jsonify(_timeline_response(data.get('start_time') or '00:00:00', tracks)), 200

        @self.app.route('/schedule/validate', methods=['POST'])
        def validate_schedule_form():
            """Check a schedule form without persisting it."""
            data = request.get_json(silent=True) or {}
            try:
                schedule = validate_schedule(
                    data.get('playlist_id'),
                    data.get('schedule_date'),
                    data.get('start_time'),
                    data.get('end_time'),
                    schedule_id=data.get('id'),
                )
            except ScheduleValidationError as e:
                return jsonify({'valid': False, 'error': str(e)}), 422
            return jsonify({'valid': True, 'schedule': schedule.to_payload()}), 200

        @self.app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'radiodesk HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'now_playing': '/now-playing',
                    'playlist_timeline': '/playlists/<id>/timeline?start=HH:mm:ss',
                    'timeline': '/timeline',
                    'schedule_validate': '/schedule/validate'
                }
            }), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting radiodesk HTTP server on {self.host}:{self.port}")
        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug
        )


def create_app(backend: Optional[RadioBackend] = None,
               clock: Callable[[], float] = time.time) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(backend=backend, clock=clock)
    return server.app


def main():
    """Run the HTTP server with settings from the environment."""
    from dotenv import load_dotenv
    from radiodesk.crosscutting.logging import setup_logging

    load_dotenv()
    setup_logging(os.getenv('RADIODESK_LOG_LEVEL', 'INFO'))
    server = HTTPServer(
        host=os.getenv('RADIODESK_HTTP_HOST', 'localhost'),
        port=int(os.getenv('RADIODESK_HTTP_PORT', '3000')),
        debug=os.getenv('RADIODESK_HTTP_DEBUG', '').lower() in ('1', 'true', 'yes')
    )
    server.run()


if __name__ == '__main__':
    main()
