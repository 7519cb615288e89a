import threading

import pytest
from unittest.mock import Mock

from radiodesk.application.listening import (
    BroadcastMonitor,
    BroadcastStateCache,
    ListeningSession,
    PlaybackSession,
    SessionState,
    parse_broadcast_state,
)
from radiodesk.domain.entities import LiveBroadcastState
from radiodesk.domain.errors import (
    MediaPlaybackError, NotFound, PlaybackOwnershipError, RateLimited, TemporaryFailure
)

NOW = 1_700_000_100


def _payload(**overrides):
    payload = {
        'title': 'Morning Song',
        'file_url': 'http://cdn/morning.mp3',
        'started_at': NOW - 90,
        'duration': '3:00',
        'active_user_count': 4,
    }
    payload.update(overrides)
    return payload


def _state(**overrides):
    return parse_broadcast_state(_payload(**overrides))


class TestParseBroadcastState:
    """Tests for now-playing payload parsing."""

    def test_full_payload(self):
        state = _state()

        assert state == LiveBroadcastState(
            title='Morning Song',
            file_url='http://cdn/morning.mp3',
            started_at=NOW - 90,
            duration_seconds=180,
            active_listener_count=4,
        )

    @pytest.mark.parametrize("field", ['title', 'file_url', 'started_at', 'duration'])
    def test_missing_required_field_means_no_broadcast(self, field):
        payload = _payload()
        del payload[field]
        assert parse_broadcast_state(payload) is None

    @pytest.mark.parametrize("field", ['title', 'file_url', 'started_at'])
    def test_empty_field_means_no_broadcast(self, field):
        assert parse_broadcast_state(_payload(**{field: ''})) is None

    def test_non_positive_started_at(self):
        assert parse_broadcast_state(_payload(started_at=0)) is None
        assert parse_broadcast_state(_payload(started_at='soon')) is None

    def test_numeric_duration_and_string_started_at(self):
        state = parse_broadcast_state(_payload(duration=240, started_at=str(NOW)))
        assert state.duration_seconds == 240
        assert state.started_at == NOW

    def test_listener_count_optional(self):
        payload = _payload()
        del payload['active_user_count']
        assert parse_broadcast_state(payload).active_listener_count == 0

    @pytest.mark.parametrize("payload", [None, {}, [], "live"])
    def test_not_a_payload(self, payload):
        assert parse_broadcast_state(payload) is None


class TestBroadcastStateCache:
    """Tests for the broadcast state cache."""

    def test_apply_reports_track_changes(self):
        cache = BroadcastStateCache()

        assert cache.apply(_state()) is True
        assert cache.version == 1
        assert cache.apply(_state(active_user_count=9)) is False
        assert cache.current.active_listener_count == 9
        assert cache.apply(_state(started_at=NOW)) is True
        assert cache.version == 2

    def test_clearing(self):
        cache = BroadcastStateCache()
        cache.apply(_state())

        assert cache.apply(None) is True
        assert cache.current is None

    def test_invalidate_marks_stale(self):
        cache = BroadcastStateCache()
        cache.apply(_state())
        assert cache.stale is False

        cache.invalidate()

        assert cache.stale is True
        assert cache.current is not None


class TestPlaybackSession:
    """Tests for single-owner playback."""

    def setup_method(self):
        self.player = Mock()
        self.playback = PlaybackSession(self.player)

    def test_second_owner_rejected(self):
        self.playback.acquire('a')
        with pytest.raises(PlaybackOwnershipError):
            self.playback.acquire('b')

    def test_non_owner_cannot_drive_player(self):
        self.playback.acquire('a')
        with pytest.raises(PlaybackOwnershipError):
            self.playback.play('b', 1, url='http://x')
        self.player.play.assert_not_called()

    def test_release_allows_new_owner(self):
        self.playback.acquire('a')
        self.playback.release('a')
        self.playback.acquire('b')
        assert self.playback.owner == 'b'

    def test_play_order(self):
        self.playback.acquire('a')
        self.playback.play('a', 7, url='http://x', offset=42)

        assert [c[0] for c in self.player.method_calls] == ['load', 'seek', 'play']
        self.player.seek.assert_called_once_with(42)
        assert self.playback.current_track_id == 7
        assert self.playback.is_playing is True

    def test_requests_applied_in_order_by_owner(self):
        self.playback.acquire('a')
        self.playback.submit('play', sender='editor', track_id=1, url='http://x')
        self.playback.submit('seek', sender='editor', seconds=10)
        self.playback.submit('pause', sender='editor')

        assert self.playback.dispatch('a') == 3
        assert [c[0] for c in self.player.method_calls] == ['load', 'seek', 'play', 'seek', 'pause']

    def test_targeted_stop_ignored_for_other_track(self):
        self.playback.acquire('a')
        self.playback.play('a', 1)
        self.playback.submit('stop', track_id=2)

        assert self.playback.dispatch('a') == 0
        self.player.stop.assert_not_called()

    def test_stop_targeted_by_url(self):
        self.playback.acquire('a')
        self.playback.play('a', 'http://cdn/2.mp3', url='http://cdn/2.mp3')
        self.playback.submit('stop', url='http://cdn/1.mp3')
        self.playback.submit('stop', url='http://cdn/2.mp3')

        assert self.playback.dispatch('a') == 1
        self.player.stop.assert_called_once()
        assert self.playback.current_url is None

    def test_player_calls_hold_session_lock(self):
        seen = []

        def try_lock_from_other_thread(*args):
            worker = threading.Thread(target=lambda: seen.append(self.playback._lock.acquire(blocking=False)))
            worker.start()
            worker.join()

        self.player.play.side_effect = try_lock_from_other_thread
        self.player.stop.side_effect = try_lock_from_other_thread
        self.playback.acquire('a')

        self.playback.play('a', 1, url='http://x')
        self.playback.stop('a')

        assert seen == [False, False]

    def test_unknown_command(self):
        with pytest.raises(ValueError):
            self.playback.submit('rewind')

    def test_only_owner_dispatches(self):
        self.playback.acquire('a')
        with pytest.raises(PlaybackOwnershipError):
            self.playback.dispatch('b')


class TestListeningSession:
    """Tests for the listener state machine."""

    def setup_method(self):
        self.player = Mock()
        self.playback = PlaybackSession(self.player)
        self.clock = Mock(return_value=NOW)
        self.ended = Mock()
        self.session = ListeningSession(self.playback, clock=self.clock, on_track_ended=self.ended)

    def test_starts_idle_and_owns_playback(self):
        assert self.session.state == SessionState.IDLE
        assert self.playback.owner == ListeningSession.OWNER

    def test_broadcast_makes_ready(self):
        assert self.session.on_broadcast(_state()) is True
        assert self.session.state == SessionState.READY
        self.player.play.assert_not_called()

    def test_start_seeks_to_live_offset(self):
        self.session.on_broadcast(_state())

        offset = self.session.start()

        assert offset == 90
        assert self.session.state == SessionState.PLAYING
        self.player.load.assert_called_once_with('http://cdn/morning.mp3')
        self.player.seek.assert_called_once_with(90)
        self.player.play.assert_called_once()

    def test_start_without_broadcast_does_nothing(self):
        assert self.session.start() is None
        assert self.session.state == SessionState.IDLE

    def test_start_after_track_finished(self):
        self.session.on_broadcast(_state(started_at=NOW - 500))

        assert self.session.start() is None
        assert self.session.state == SessionState.IDLE
        self.ended.assert_called_once()
        self.player.play.assert_not_called()

    def test_future_start_plays_from_top(self):
        self.session.on_broadcast(_state(started_at=NOW + 30))
        assert self.session.start() == 0

    def test_new_track_while_playing_starts_from_top(self):
        self.session.on_broadcast(_state())
        self.session.start()
        self.player.reset_mock()

        changed = self.session.on_broadcast(_state(file_url='http://cdn/next.mp3', started_at=NOW))

        assert changed is True
        assert self.session.state == SessionState.PLAYING
        self.player.load.assert_called_once_with('http://cdn/next.mp3')
        self.player.seek.assert_called_once_with(0)

    def test_same_track_does_not_reseek(self):
        self.session.on_broadcast(_state())
        self.session.start()
        self.player.reset_mock()

        assert self.session.on_broadcast(_state(active_user_count=20)) is False
        self.player.seek.assert_not_called()
        assert self.session.broadcast.active_listener_count == 20

    def test_pause_then_resume_resyncs(self):
        self.session.on_broadcast(_state())
        self.session.start()
        self.session.pause()
        assert self.session.state == SessionState.READY

        self.clock.return_value = NOW + 30
        assert self.session.start() == 120

    def test_broadcast_gone_stops(self):
        self.session.on_broadcast(_state())
        self.session.start()

        assert self.session.on_broadcast(None) is True

        assert self.session.state == SessionState.IDLE
        self.player.stop.assert_called_once()

    def test_media_ended(self):
        self.session.on_broadcast(_state())
        self.session.start()

        self.session.on_media_ended()

        assert self.session.state == SessionState.IDLE
        self.ended.assert_called_once()

    def test_media_error_returns_to_ready_and_raises(self):
        self.player.play.side_effect = OSError("decoder failed")
        self.session.on_broadcast(_state())

        with pytest.raises(MediaPlaybackError) as exc_info:
            self.session.start()

        assert isinstance(exc_info.value.__cause__, OSError)
        assert self.session.state == SessionState.READY
        assert isinstance(self.session.last_error, OSError)

    def test_retry_after_media_error(self):
        self.player.play.side_effect = [OSError("blip"), None]
        self.session.on_broadcast(_state())

        with pytest.raises(MediaPlaybackError):
            self.session.start()

        assert self.session.start() == 90
        assert self.session.state == SessionState.PLAYING
        assert self.session.last_error is None

    def test_process_requests_applies_submitted_stop(self):
        self.session.on_broadcast(_state())
        self.session.start()
        self.playback.submit('stop', sender='editor', url='http://cdn/morning.mp3')

        assert self.session.process_requests() == 1
        self.player.stop.assert_called_once()
        assert self.session.state == SessionState.READY
        assert self.playback.pending_requests == 0

    def test_process_requests_pause_and_play(self):
        self.session.on_broadcast(_state())
        self.session.start()

        self.playback.submit('pause', sender='editor')
        self.session.process_requests()
        assert self.session.state == SessionState.READY

        self.playback.submit('play', sender='editor', track_id=3, url='http://cdn/3.mp3')
        self.session.process_requests()
        assert self.session.state == SessionState.PLAYING
        assert self.playback.current_url == 'http://cdn/3.mp3'

    def test_process_requests_with_empty_queue(self):
        assert self.session.process_requests() == 0
        assert self.session.state == SessionState.IDLE

    def test_process_requests_media_error(self):
        self.player.play.side_effect = RuntimeError("decode failed")
        self.playback.submit('play', sender='editor', track_id=3, url='http://cdn/3.mp3')

        with pytest.raises(MediaPlaybackError):
            self.session.process_requests()
        assert self.session.state == SessionState.READY

    def test_close_releases_playback(self):
        self.session.on_broadcast(_state())
        self.session.start()

        self.session.close()

        assert self.playback.owner is None
        self.player.stop.assert_called_once()


class TestBroadcastMonitor:
    """Tests for now-playing polling."""

    def setup_method(self):
        self.backend = Mock()
        self.session = Mock()
        self.monitor = BroadcastMonitor(self.backend, session=self.session, interval=10)

    def test_poll_applies_state(self):
        self.backend.now_playing.return_value = _payload()

        state = self.monitor.poll_once()

        assert state.title == 'Morning Song'
        assert self.monitor.cache.current == state
        self.session.on_broadcast.assert_called_once_with(state)

    def test_no_broadcast(self):
        self.backend.now_playing.return_value = {}

        assert self.monitor.poll_once() is None
        assert self.monitor.cache.current is None
        self.session.on_broadcast.assert_not_called()

    def test_not_found_clears_broadcast(self):
        self.backend.now_playing.return_value = _payload()
        self.monitor.poll_once()
        self.backend.now_playing.side_effect = NotFound("no track")

        assert self.monitor.poll_once() is None
        self.session.on_broadcast.assert_called_with(None)

    def test_temporary_failure_keeps_last_state(self):
        self.backend.now_playing.return_value = _payload()
        first = self.monitor.poll_once()
        self.backend.now_playing.side_effect = TemporaryFailure("timeout")

        assert self.monitor.poll_once() == first
        assert self.monitor.cache.current == first

    def test_rate_limited_backs_off(self):
        self.backend.now_playing.side_effect = RateLimited(retry_after_ms=30000)

        self.monitor.poll_once()

        assert self.monitor._next_wait == 30

    def test_run_stops_after_max_polls(self):
        self.backend.now_playing.return_value = {}
        self.monitor.interval = 0

        assert self.monitor.run(max_polls=3) == 3
        assert self.backend.now_playing.call_count == 3

    def test_run_calls_after_poll(self):
        self.backend.now_playing.return_value = _payload()
        seen = []

        self.monitor.run(max_polls=1, after_poll=seen.append)

        assert len(seen) == 1
        assert seen[0].title == 'Morning Song'

    def test_run_survives_media_error(self):
        self.backend.now_playing.return_value = _payload()
        self.session.on_broadcast.side_effect = MediaPlaybackError("boom")
        self.monitor.interval = 0

        assert self.monitor.run(max_polls=2) == 2

    def test_run_drains_playback_requests(self):
        self.backend.now_playing.return_value = {}
        self.monitor.interval = 0

        self.monitor.run(max_polls=2)

        assert self.session.process_requests.call_count == 2

    def test_invalidate_wakes_loop(self):
        self.monitor.invalidate()
        assert self.monitor.cache.stale is True
        assert self.monitor._wake.is_set()
