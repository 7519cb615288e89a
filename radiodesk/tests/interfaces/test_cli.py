import pytest
import argparse
from unittest.mock import Mock, patch

from radiodesk.crosscutting.config import ConfigError, SettingsManager, get_settings_manager
from radiodesk.domain.entities import Playlist, Track
from radiodesk.interfaces.cli import CLI, ConsolePlayer

NOW = 1_700_000_100


class TestCLI:
    """Tests for CLI functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cli = CLI()
        # Keep test runs away from the real log file and signal handlers
        self._patchers = [
            patch.object(CLI, '_setup_logging'),
            patch.object(CLI, '_setup_signal_handlers'),
        ]
        for patcher in self._patchers:
            patcher.start()

    def teardown_method(self):
        """Clean up test fixtures."""
        for patcher in self._patchers:
            patcher.stop()

    def test_create_parser(self):
        """Test argument parser creation."""
        parser = self.cli._create_parser()

        assert isinstance(parser, argparse.ArgumentParser)

        args = parser.parse_args(['timeline', '--durations', '3:00', '240', '--start', '09:00', '--twelve-hour'])
        assert args.command == 'timeline'
        assert args.durations == ['3:00', '240']
        assert args.start == '09:00'
        assert args.twelve_hour is True

        args = parser.parse_args(['schedule', 'add', '--playlist-id', '3', '--date', '2025-06-01',
                                  '--start', '09:00', '--end', '10:00'])
        assert args.schedule_command == 'add'
        assert args.playlist_id == 3

        args = parser.parse_args(['listen', '--interval', '5', '--log-level', 'DEBUG'])
        assert args.interval == 5.0
        assert args.log_level == 'DEBUG'

    def test_timeline_requires_source(self):
        with pytest.raises(SystemExit):
            self.cli._create_parser().parse_args(['timeline'])

    def test_no_command_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            self.cli.run([])
        assert exc_info.value.code == 1

    @patch('logging.handlers.RotatingFileHandler')
    @patch('radiodesk.interfaces.cli.logging')
    def test_setup_logging(self, mock_logging, mock_file_handler):
        """Test logging setup."""
        for patcher in self._patchers:
            patcher.stop()
        self._patchers = []

        self.cli._setup_logging('DEBUG')

        mock_logging.basicConfig.assert_called_once()
        call_args = mock_logging.basicConfig.call_args[1]

        assert call_args['level'] == mock_logging.DEBUG
        assert 'format' in call_args
        assert 'handlers' in call_args

    def test_timeline_from_durations(self, capsys):
        self.cli.run(['timeline', '--durations', '3:00', '4:00', '300', '--start', '09:00:00'])

        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0] == 'ad hoc (length: 0 hrs 12 mins)'
        assert lines[1:] == ['09:00:00  Track 1', '09:03:00  Track 2', '09:07:00  Track 3']

    def test_timeline_twelve_hour(self, capsys):
        self.cli.run(['timeline', '--durations', '30:00', '--start', '01:00:00 PM', '--twelve-hour'])

        out = capsys.readouterr().out
        assert '01:00:00 PM  Track 1' in out

    def test_timeline_from_backend(self, capsys):
        client = Mock()
        client.get_playlist.return_value = Playlist(
            id=4, name='Morning',
            tracks=(Track(id=1, title='Intro', artist='Band', duration_seconds=60),)
        )

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['timeline', '--playlist-id', '4', '--start', '06:00'])

        client.get_playlist.assert_called_once_with(4)
        assert '06:00:00  Intro - Band' in capsys.readouterr().out

    @patch('radiodesk.interfaces.cli.time')
    def test_now_playing(self, mock_time, capsys):
        mock_time.time.return_value = NOW
        client = Mock()
        client.now_playing.return_value = {
            'title': 'Morning Song', 'file_url': 'http://cdn/a.mp3',
            'started_at': NOW - 90, 'duration': '3:00', 'active_user_count': 2,
        }

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['now-playing'])

        out = capsys.readouterr().out
        assert 'Now playing: Morning Song' in out
        assert 'Position: 01:30 / 03:00' in out
        assert 'Active listeners: 2' in out

    def test_now_playing_no_broadcast(self, capsys):
        client = Mock()
        client.now_playing.return_value = {}

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['now-playing'])

        assert 'No live music broadcast' in capsys.readouterr().out

    def test_playlists(self, capsys):
        client = Mock()
        client.list_playlists.return_value = [Playlist(id=1, name='Morning', brand='FM1'),
                                              Playlist(id=2, name='Evening')]

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['playlists'])

        out = capsys.readouterr().out
        assert '1: Morning (FM1)' in out
        assert '2: Evening' in out

    def test_schedule_add(self, capsys):
        client = Mock()
        client.create_schedule.return_value = {'message': 'Playlist scheduled successfully'}

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['schedule', 'add', '--playlist-id', '3', '--date', '2025-06-01',
                          '--start', '09:00', '--end', '10:00'])

        client.create_schedule.assert_called_once()
        assert 'Playlist scheduled successfully' in capsys.readouterr().out

    def test_schedule_add_invalid_exits(self):
        client = Mock()

        with patch.object(self.cli, '_create_client', return_value=client):
            with pytest.raises(SystemExit) as exc_info:
                self.cli.run(['schedule', 'add', '--playlist-id', '3', '--date', '2025-06-01',
                              '--start', '10:00', '--end', '09:00'])

        assert exc_info.value.code == 1
        client.create_schedule.assert_not_called()

    def test_schedule_today(self, capsys):
        client = Mock()
        client.today_schedule.return_value = {
            'playlist': {'name': 'Afternoon'}, 'start_time': '02:00:00 PM', 'end_time': '03:00:00 PM'
        }

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['schedule', 'today'])

        assert 'Afternoon: 14:00:00 - 15:00:00' in capsys.readouterr().out

    def test_schedule_delete(self):
        client = Mock()

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['schedule', 'delete', '--id', '9'])

        client.delete_schedule.assert_called_once_with(9)

    @patch('radiodesk.interfaces.cli.get_settings_manager')
    def test_missing_configuration_exits(self, mock_get_settings):
        mock_get_settings.return_value.get_api_config.side_effect = ConfigError("RADIODESK_API_URL not found")

        with pytest.raises(SystemExit) as exc_info:
            self.cli.run(['playlists'])

        assert exc_info.value.code == 1

    def test_backend_error_exits(self):
        client = Mock()
        client.list_playlists.side_effect = RuntimeError("boom")

        with patch.object(self.cli, '_create_client', return_value=client):
            with pytest.raises(SystemExit) as exc_info:
                self.cli.run(['playlists'])

        assert exc_info.value.code == 1

    @patch('radiodesk.interfaces.cli.RadioApiClient')
    @patch('radiodesk.interfaces.cli.get_settings_manager')
    def test_login_saves_token(self, mock_get_settings, mock_client_class, capsys):
        settings = mock_get_settings.return_value
        settings.get_api_url.return_value = 'https://radio.example.com/api'
        settings.get_http_timeout.return_value = 10.0
        mock_client_class.return_value.login.return_value = 'new-token'

        self.cli.run(['login', '--email', 'dj@example.com', '--password', 'pw'])

        mock_client_class.return_value.login.assert_called_once_with('dj@example.com', 'pw')
        settings.save_api_token.assert_called_once_with('new-token')
        assert 'Login successful' in capsys.readouterr().out

    def test_logout_clears_stored_token(self, tmp_path, capsys):
        settings = SettingsManager(str(tmp_path))
        settings.save_api_token('old-token')
        settings.save_env_vars({'RADIODESK_API_URL': 'https://radio.example.com/api'})

        self.cli.run(['logout', '--config-dir', str(tmp_path)])

        assert not settings.tokens_file.exists()
        assert settings.env_file.exists()
        assert 'Stored token removed' in capsys.readouterr().out
        assert get_settings_manager().config_dir == tmp_path

    def test_logout_all_clears_settings(self, tmp_path):
        settings = SettingsManager(str(tmp_path))
        settings.save_api_token('old-token')
        settings.save_env_vars({'RADIODESK_API_URL': 'https://radio.example.com/api'})

        self.cli.run(['logout', '--all', '--config-dir', str(tmp_path)])

        assert not settings.tokens_file.exists()
        assert not settings.env_file.exists()

    @patch('radiodesk.interfaces.cli.get_settings_manager')
    def test_listen_follows_broadcast(self, mock_get_settings, capsys):
        client = Mock()
        client.now_playing.return_value = {
            'title': 'Morning Song', 'file_url': 'http://cdn/a.mp3',
            'started_at': 1, 'duration': 0,
        }

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['listen', '--interval', '0.01', '--max-polls', '1'])

        out = capsys.readouterr().out
        assert 'Loading http://cdn/a.mp3' in out
        assert 'Playing' in out
        assert 'Stopped' in out

    @patch('radiodesk.interfaces.cli.get_settings_manager')
    def test_listen_waits_without_broadcast(self, mock_get_settings, capsys):
        client = Mock()
        client.now_playing.return_value = {}

        with patch.object(self.cli, '_create_client', return_value=client):
            self.cli.run(['listen', '--interval', '0.01', '--max-polls', '2'])

        out = capsys.readouterr().out
        assert 'Waiting for broadcast...' in out
        assert 'Playing' not in out


class TestConsolePlayer:
    """Tests for the console media player."""

    def test_reports_actions(self, capsys):
        player = ConsolePlayer()

        player.load('http://cdn/a.mp3')
        player.seek(75)
        player.play()

        out = capsys.readouterr().out
        assert 'Loading http://cdn/a.mp3' in out
        assert 'Seeking to 01:15' in out
        assert player.url == 'http://cdn/a.mp3'
