import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from dataclasses import replace
from typing import List, Optional

from albumqueue.application.coordinator import AlbumQueueCoordinator
from albumqueue.crosscutting.config import ConfigError, Settings, load_settings
from albumqueue.crosscutting.logging import setup_logging
from albumqueue.crosscutting.reporting import (
    create_reconciliation_report, format_reconciliation_report, save_reconciliation_report,
)
from albumqueue.domain.entities import Album
from albumqueue.infrastructure.providers.memory import MemoryMusicProvider, demo_catalog
from albumqueue.infrastructure.providers.spotify import SpotifyProvider


def create_coordinator(settings: Settings, provider_type: str = 'spotify',
                       dropped_track_ids: Optional[List[str]] = None) -> AlbumQueueCoordinator:
    """Create a coordinator wired to the requested provider."""
    if provider_type == 'spotify':
        provider = SpotifyProvider(settings)
    elif provider_type == 'memory':
        provider = MemoryMusicProvider(demo_catalog(), dropped_track_ids=dropped_track_ids)
    else:
        raise ValueError(f"Unsupported provider: {provider_type}")
    return AlbumQueueCoordinator(
        authorization=provider,
        catalog=provider,
        hydration=provider,
        player=provider,
        settings=settings,
    )


class CLI:
    """Command Line Interface for albumqueue."""

    def __init__(self):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self._setup_signal_handlers()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            '--provider',
            choices=['spotify', 'memory'],
            default='spotify',
            help='Catalog and playback provider (default: spotify)'
        )
        common.add_argument(
            '--env-file',
            default=None,
            help='Path to a .env file (default: ./.env if present)'
        )
        common.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default=None,
            help='Set logging level (default from ALBUMQUEUE_LOG_LEVEL or INFO)'
        )
        common.add_argument(
            '--log-file',
            default=None,
            help='Also write structured logs to this file'
        )
        common.add_argument(
            '--drop',
            nargs='*',
            default=[],
            metavar='TRACK_ID',
            help='Track IDs the memory provider silently drops from the queue'
        )

        parser = argparse.ArgumentParser(
            prog='albumqueue',
            description='Queue every track of an album and check how many actually made it'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        search_parser = subparsers.add_parser('search', parents=[common], help='Search the catalog for albums')
        search_parser.add_argument('term', help='Search text')
        search_parser.add_argument(
            '--suppress-errors',
            action='store_true',
            help='Do not show search errors'
        )

        repro_parser = subparsers.add_parser(
            'repro', parents=[common], help='Search, play an album and compare queued vs observed tracks'
        )
        repro_parser.add_argument('term', help='Search text')
        repro_parser.add_argument(
            '--pick',
            type=int,
            default=1,
            help='1-based position of the album in the results (default: 1)'
        )
        repro_parser.add_argument(
            '--album-id',
            default=None,
            help='Play the album with this ID from the results instead of --pick'
        )
        repro_parser.add_argument(
            '--observe-delay',
            type=float,
            default=None,
            help='Seconds to wait after play before reading the queue (default: 0)'
        )
        repro_parser.add_argument(
            '--report-path',
            default=None,
            help='Directory to save a JSON reconciliation report'
        )

        subparsers.add_parser('stop', parents=[common], help='Stop playback')
        subparsers.add_parser('config', parents=[common], help='Show the resolved configuration')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down...")
            self._cleanup_resources()
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Clean up resources on exit."""
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.debug(f"CLI execution time: {duration:.2f}s")

    def _load_settings(self, args: argparse.Namespace) -> Settings:
        settings = load_settings(args.env_file)
        overrides = {}
        if getattr(args, 'suppress_errors', False):
            overrides['suppress_inline_errors'] = True
        if getattr(args, 'observe_delay', None) is not None:
            if args.observe_delay < 0:
                raise ValueError("--observe-delay must not be negative")
            overrides['observation_delay'] = args.observe_delay
        if args.log_level:
            overrides['log_level'] = args.log_level
        if overrides:
            settings = replace(settings, **overrides)
        return settings

    def _print_albums(self, albums: List[Album]) -> None:
        for index, album in enumerate(albums, start=1):
            print(f"{index:2d}. {album.id}: {album.display_name}")

    async def _search(self, coordinator: AlbumQueueCoordinator, args: argparse.Namespace) -> int:
        albums = await coordinator.search(args.term)
        error = coordinator.displayed_error()
        if error is not None:
            print(f"Error: {getattr(error, 'description', None) or error}", file=sys.stderr)
            return 1
        self._print_albums(albums)
        print(f"Status: {coordinator.snapshot.status}")
        return 0

    def _select_album(self, albums: List[Album], args: argparse.Namespace) -> Optional[Album]:
        if args.album_id:
            return next((a for a in albums if a.id == args.album_id), None)
        if 1 <= args.pick <= len(albums):
            return albums[args.pick - 1]
        return None

    async def _repro(self, coordinator: AlbumQueueCoordinator, args: argparse.Namespace) -> int:
        logger = logging.getLogger(__name__)

        albums = await coordinator.search(args.term)
        error = coordinator.displayed_error()
        if error is not None:
            print(f"Error: {getattr(error, 'description', None) or error}", file=sys.stderr)
            return 1
        if not albums:
            print(f"Status: {coordinator.snapshot.status}")
            logger.warning(f"No albums found for '{args.term}'")
            return 1

        album = self._select_album(albums, args)
        if album is None:
            print(f"Error: no album at that position among {len(albums)} results", file=sys.stderr)
            return 1

        print(f"Playing: {album.display_name}")
        submission = await coordinator.play(album)
        modal = coordinator.snapshot.modal_error
        if submission is None or modal is not None:
            print(f"Error: {modal.description if modal else 'playback did not start'}", file=sys.stderr)
            coordinator.acknowledge_modal_error()
            return 1

        for line in coordinator.status_lines():
            print(line)

        report = create_reconciliation_report(coordinator.snapshot.playing_album or album, submission)
        if report.missing:
            print(format_reconciliation_report(report))
        if args.report_path:
            path = save_reconciliation_report(report, args.report_path)
            logger.info(f"Report saved to: {path}")
            print(f"Report: {path}")
        return 0

    async def _run_command(self, args: argparse.Namespace, settings: Settings) -> int:
        coordinator = create_coordinator(settings, args.provider, args.drop)
        await coordinator.start()
        try:
            if args.command == 'search':
                return await self._search(coordinator, args)
            if args.command == 'repro':
                return await self._repro(coordinator, args)
            if args.command == 'stop':
                coordinator.stop()
                print("Stopped")
                return 0
            raise ValueError(f"Unknown command: {args.command}")
        finally:
            await coordinator.shutdown()

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        logger = logging.getLogger(__name__)

        try:
            args = self.parser.parse_args(argv)

            if not args.command:
                self.parser.print_help()
                sys.exit(1)

            settings = self._load_settings(args)
            setup_logging(settings.log_level, args.log_file)

            if args.command == 'config':
                print(json.dumps(settings.summary(), indent=2))
                sys.exit(0)

            sys.exit(asyncio.run(self._run_command(args, settings)))

        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            self._cleanup_resources()
            sys.exit(130)
        except (ConfigError, ValueError) as e:
            logger.error(f"Configuration error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        except Exception as e:
            logger.error(f"CLI error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
