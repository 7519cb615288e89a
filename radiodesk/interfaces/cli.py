import argparse
import getpass
import logging
import signal
import sys
import time
from typing import List, Optional

from dotenv import load_dotenv

from radiodesk.application.listening import (
    BroadcastMonitor, ListeningSession, PlaybackSession, parse_broadcast_state
)
from radiodesk.application.playlist_editor import PlaylistEditor
from radiodesk.application.scheduling import ScheduleService
from radiodesk.crosscutting.config import ConfigError, get_settings_manager, setup_config
from radiodesk.domain.entities import Playlist, Track
from radiodesk.domain.errors import ScheduleValidationError
from radiodesk.domain.live_offset import compute_offset_seconds, has_ended
from radiodesk.domain.timeutils import format_clock, parse_duration_to_seconds
from radiodesk.infrastructure.api_client import RadioApiClient


class ConsolePlayer:
    """MediaPlayer that reports what an audio element would be told to do."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self.url: Optional[str] = None

    def load(self, url: str) -> None:
        self.url = url
        print(f"Loading {url}", file=self.out)

    def seek(self, seconds: float) -> None:
        print(f"Seeking to {format_clock(seconds)}", file=self.out)

    def play(self) -> None:
        print("Playing", file=self.out)

    def pause(self) -> None:
        print("Paused", file=self.out)

    def stop(self) -> None:
        print("Stopped", file=self.out)


class CLI:
    """Command Line Interface for radiodesk."""

    def __init__(self):
        """Initialize CLI."""
        # .env is loaded by main() only, to keep tests deterministic
        self.parser = self._create_parser()
        self._start_time = None
        self._monitor: Optional[BroadcastMonitor] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='INFO',
            help='Set logging level'
        )
        common.add_argument(
            '--config-dir',
            help='Directory holding tokens.json and .env (default: ~/.radiodesk)'
        )

        parser = argparse.ArgumentParser(
            prog='radiodesk',
            description='Station admin console and live listener for scheduled radio playlists'
        )
        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Timeline command
        timeline_parser = subparsers.add_parser('timeline', parents=[common],
                                                help='Show per-track start times of a playlist')
        source = timeline_parser.add_mutually_exclusive_group(required=True)
        source.add_argument(
            '--playlist-id',
            type=int,
            help='Playlist to load from the backend'
        )
        source.add_argument(
            '--durations',
            nargs='+',
            help='Track lengths ("m:ss", "H:mm:ss" or seconds) instead of a stored playlist'
        )
        timeline_parser.add_argument(
            '--start',
            default='00:00:00',
            help='Anchor start time, 24-hour or "hh:mm:ss AM/PM" (default: 00:00:00)'
        )
        timeline_parser.add_argument(
            '--twelve-hour',
            action='store_true',
            help='Print start times in 12-hour format'
        )

        # Now-playing command
        subparsers.add_parser('now-playing', parents=[common],
                              help='Show the live broadcast and the current seek offset')

        # Listen command
        listen_parser = subparsers.add_parser('listen', parents=[common],
                                              help='Follow the live broadcast')
        listen_parser.add_argument(
            '--interval',
            type=float,
            default=None,
            help='Seconds between polls (default from RADIODESK_POLL_INTERVAL or 10)'
        )
        listen_parser.add_argument(
            '--max-polls',
            type=int,
            default=None,
            help='Stop after this many polls'
        )

        # Playlists command
        subparsers.add_parser('playlists', parents=[common], help='List playlists')

        # Schedule commands
        schedule_parser = subparsers.add_parser('schedule', parents=[common],
                                                help='Manage broadcast schedules')
        schedule_sub = schedule_parser.add_subparsers(dest='schedule_command')

        for name, help_text in (('add', 'Schedule a playlist'), ('update', 'Change a schedule')):
            sp = schedule_sub.add_parser(name, parents=[common], help=help_text)
            if name == 'update':
                sp.add_argument('--id', type=int, required=True, help='Schedule id')
            sp.add_argument('--playlist-id', type=int, required=True, help='Playlist to broadcast')
            sp.add_argument('--date', required=True, help='Schedule date (YYYY-MM-DD)')
            sp.add_argument('--start', required=True, help='Start time')
            sp.add_argument('--end', required=True, help='End time')

        delete_parser = schedule_sub.add_parser('delete', parents=[common], help='Delete a schedule')
        delete_parser.add_argument('--id', type=int, required=True, help='Schedule id')
        schedule_sub.add_parser('today', parents=[common], help="Show today's schedule")
        schedule_sub.add_parser('list', parents=[common], help='List schedules')

        # Login command
        login_parser = subparsers.add_parser('login', parents=[common],
                                             help='Log in and store the API token')
        login_parser.add_argument('--email', required=True, help='Account e-mail')
        login_parser.add_argument('--password', help='Password (prompted when omitted)')

        # Logout command
        logout_parser = subparsers.add_parser('logout', parents=[common],
                                              help='Forget the stored API token')
        logout_parser.add_argument('--all', action='store_true',
                                   help='Also remove the stored .env settings')

        # Config command
        subparsers.add_parser('config', parents=[common], help='Show configuration summary')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            self._cleanup_resources()
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Clean up resources on exit."""
        logger = logging.getLogger(__name__)
        if self._monitor is not None:
            self._monitor.stop()
        if self._start_time:
            duration = time.time() - self._start_time
            logger.debug(f"CLI execution time: {duration:.2f}s")

    def _setup_logging(self, level: str) -> None:
        """Setup logging configuration."""
        from logging.handlers import RotatingFileHandler
        handlers = [
            logging.StreamHandler(sys.stderr),
        ]
        # Rotate at ~10MB with up to 5 backups
        try:
            handlers.append(RotatingFileHandler('radiodesk.log', maxBytes=10 * 1024 * 1024, backupCount=5))
        except OSError:
            pass
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=handlers,
            force=True
        )

    def _create_client(self) -> RadioApiClient:
        """Create backend client from configuration."""
        config = get_settings_manager().get_api_config()
        return RadioApiClient(**config)

    def _show_timeline(self, args: argparse.Namespace) -> None:
        """Print the start time of every track."""
        if args.playlist_id is not None:
            client = self._create_client()
            editor = PlaylistEditor(client)
            editor.load_from_backend(args.playlist_id, args.start)
        else:
            tracks = tuple(
                Track(id=i + 1, title=f"Track {i + 1}", duration_seconds=parse_duration_to_seconds(d))
                for i, d in enumerate(args.durations)
            )
            editor = PlaylistEditor(None, Playlist(name='ad hoc', tracks=tracks), args.start)

        if editor.playlist.name:
            print(f"{editor.playlist.name} (length: {editor.total_length_display})")
        for entry in editor.timeline:
            start = entry.display_start_time if args.twelve_hour else entry.start_time
            label = entry.track.title
            if entry.track.artist:
                label = f"{label} - {entry.track.artist}"
            print(f"{start}  {label}")

    def _now_playing(self, args: argparse.Namespace) -> None:
        client = self._create_client()
        state = parse_broadcast_state(client.now_playing())
        if state is None:
            print("No live music broadcast")
            return

        offset = compute_offset_seconds(time.time(), state.started_at)
        print(f"Now playing: {state.title}")
        print(f"Position: {format_clock(offset)} / {format_clock(state.duration_seconds)}")
        if has_ended(offset, state.duration_seconds):
            print("Track has ended, waiting for the next one")
        print(f"Active listeners: {state.active_listener_count}")

    def _listen(self, args: argparse.Namespace) -> None:
        settings = get_settings_manager()
        interval = args.interval or settings.get_poll_interval()
        client = self._create_client()

        # A finished track triggers an immediate refetch instead of waiting a full interval
        session = ListeningSession(PlaybackSession(ConsolePlayer()),
                                   on_track_ended=lambda: self._monitor.invalidate())
        monitor = BroadcastMonitor(client, session=session, interval=interval)
        self._monitor = monitor

        def follow(state):
            # Running the command is the listener's start gesture, for every new track
            if state is None:
                print("Waiting for broadcast...")
            session.start()

        try:
            monitor.run(max_polls=args.max_polls, after_poll=follow)
        finally:
            session.close()

    def _list_playlists(self, args: argparse.Namespace) -> None:
        client = self._create_client()
        playlists = client.list_playlists()

        print("Playlists:")
        print("-" * 50)
        for playlist in playlists:
            brand = f" ({playlist.brand})" if playlist.brand else ""
            print(f"{playlist.id}: {playlist.name}{brand}")

    def _schedule(self, args: argparse.Namespace) -> None:
        command = args.schedule_command
        if not command:
            self.parser.parse_args(['schedule', '--help'])
            return

        service = ScheduleService(self._create_client())
        if command == 'add':
            response = service.create(args.playlist_id, args.date, args.start, args.end)
            print(response.get('message') or 'Playlist scheduled successfully')
        elif command == 'update':
            response = service.update(args.id, args.playlist_id, args.date, args.start, args.end)
            print(response.get('message') or 'Schedule updated successfully')
        elif command == 'delete':
            service.delete(args.id)
            print('Schedule deleted successfully')
        elif command == 'today':
            today = service.today()
            playlist = today.get('playlist') or {}
            if not playlist:
                print(today.get('message') or 'Nothing scheduled today')
                return
            print(f"{playlist.get('name', '?')}: {today.get('start_time')} - {today.get('end_time')}")
        elif command == 'list':
            for schedule in service.list():
                print(f"{schedule.id}: playlist {schedule.playlist_id} on {schedule.schedule_date} "
                      f"{schedule.start_time}-{schedule.end_time}")

    def _login(self, args: argparse.Namespace) -> None:
        settings = get_settings_manager()
        client = RadioApiClient(settings.get_api_url(), timeout=settings.get_http_timeout())
        password = args.password or getpass.getpass('Password: ')
        token = client.login(args.email, password)
        settings.save_api_token(token)
        print('Login successful, token saved')

    def _logout(self, args: argparse.Namespace) -> None:
        settings = get_settings_manager()
        settings.clear_tokens()
        if args.all:
            settings.clear_env_vars()
            print('Stored token and settings removed')
        else:
            print('Stored token removed')

    def _show_config(self, args: argparse.Namespace) -> None:
        summary = get_settings_manager().get_config_summary()
        for key, value in summary.items():
            print(f"{key}: {value}")

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        logger = logging.getLogger(__name__)

        try:
            args = self.parser.parse_args(argv)

            if not args.command:
                self.parser.print_help()
                sys.exit(1)

            self._setup_logging(args.log_level)
            self._setup_signal_handlers()
            if args.config_dir:
                setup_config(args.config_dir)

            handlers = {
                'timeline': self._show_timeline,
                'now-playing': self._now_playing,
                'listen': self._listen,
                'playlists': self._list_playlists,
                'schedule': self._schedule,
                'login': self._login,
                'logout': self._logout,
                'config': self._show_config,
            }
            handlers[args.command](args)

        except ScheduleValidationError as e:
            logger.error(f"Invalid schedule: {e}")
            sys.exit(1)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        except Exception as e:
            logger.error(f"CLI error: {e}")
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
