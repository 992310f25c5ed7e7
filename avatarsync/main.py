"""Main application entry point for AvatarSync."""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from avatarsync.audio.player import PyAudioPlayer
from avatarsync.scheduling import Scheduler
from avatarsync.services.companion_session import CompanionSession
from avatarsync.streaming.publisher import StreamEventPublisher
from avatarsync.streaming.replay import WavReplayClient
from avatarsync.sync.viseme_service import WebSocketVisemeService

from . import __version__
from .config import AvatarSyncConfig

logger = logging.getLogger(__name__)


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = AvatarSyncConfig(config_path)
        # Set up logging (override config with command line if specified)
        level = log_level or self.config.get('logging.level', 'INFO')
        setup_logging(self.config, level)
        self.console = Console()
        self.analytics_events: List[Tuple[str, Dict[str, Any]]] = []
        self.session: Optional[CompanionSession] = None

    async def run(self, replay_path: str, pace: float, duration: Optional[float]) -> bool:
        """Replay a WAV file as streamed model output through the full stack.

        Runs until the nudge budget terminates the session or ``duration``
        seconds pass.
        """
        scheduler = Scheduler()
        publisher = StreamEventPublisher(self.config.get('session.topic', 'stream.events'))
        client = WavReplayClient(publisher, scheduler, replay_path, pace=pace)
        self.config.set('audio.sample_rate', client.sample_rate)
        self.config.set('audio.channels', client.channels)

        viseme_service = WebSocketVisemeService(
            scheduler,
            server_url=self.config.get('viseme_service.url', 'ws://localhost:8000/stream-audio'),
            connect_timeout_seconds=self.config.get('viseme_service.connect_timeout_seconds', 5.0),
            max_reconnect_attempts=self.config.get('viseme_service.max_reconnect_attempts', 3),
        )
        player = PyAudioPlayer(
            scheduler,
            sample_rate=client.sample_rate,
            channels=client.channels,
            output_device_index=self.config.get('audio.output_device_index'),
        )

        finished = asyncio.Event()
        self.session = CompanionSession(
            self.config, client, viseme_service, player, scheduler,
            on_analytics_event=self._on_analytics_event,
            on_session_terminated=finished.set,
        )

        try:
            if not await self.session.start():
                return False
            try:
                await asyncio.wait_for(finished.wait(), timeout=duration)
            except asyncio.TimeoutError:
                logger.info(f"Run duration of {duration}s elapsed")
        finally:
            await self.session.stop()
            await scheduler.drain()
            player.close()
        return True

    def _on_analytics_event(self, event: str, data: Dict[str, Any]) -> None:
        logger.info(f"Analytics event {event}: {data}")
        self.analytics_events.append((event, data))

    def print_report(self) -> None:
        """Print packet statistics and silence analytics for the finished session."""
        if self.session is None:
            return

        stats_table = Table(title="Audio Performance")
        stats_table.add_column("Section", style="cyan")
        stats_table.add_column("Metric")
        stats_table.add_column("Value", justify="right", style="green")
        for section, values in self.session.get_packet_statistics().items():
            for name, value in values.items():
                if isinstance(value, float):
                    value = f"{value:.2f}"
                stats_table.add_row(section, name, str(value))
        self.console.print(stats_table)

        analytics = self.session.nudge_engine.get_analytics()
        silence_table = Table(title="Silence Analytics")
        silence_table.add_column("Metric", style="cyan")
        silence_table.add_column("Value", justify="right", style="green")
        silence_table.add_row("Nudges sent", str(analytics.total_nudges))
        silence_table.add_row("Nudge success rate", f"{analytics.nudge_success_rate * 100:.0f}%")
        silence_table.add_row("Silence periods", str(analytics.silence_periods))
        silence_table.add_row("Average silence", f"{analytics.average_silence_duration:.1f}s")
        silence_table.add_row("Longest silence", f"{analytics.longest_silence_period:.1f}s")
        silence_table.add_row("Session terminated", str(self.session.terminated))
        self.console.print(silence_table)


# Third-party loggers pinned to WARNING
NOISY_LOGGERS = ("aiohttp", "asyncio", "pubsub")


def _level_number(level: str) -> int:
    number = logging.getLevelName(str(level).upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level}")
    return number


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging for the avatarsync package.

    ``level`` applies to the ``avatarsync`` logger only; third-party loggers
    stay at WARNING. ``logging.loggers`` in the config maps module names to
    levels for finer control, e.g. ``avatarsync.sync.pipeline: DEBUG``.
    """
    package_level = _level_number(level)
    log_file_path = config.get('logging.file_path', 'data/logs/avatarsync.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler receives everything the loggers let through
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # degradations and errors only
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.WARNING)
    for handler in handlers:
        root_logger.addHandler(handler)

    logging.getLogger("avatarsync").setLevel(package_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    overrides = config.get('logging.loggers') or {}
    for name, override in overrides.items():
        logging.getLogger(name).setLevel(_level_number(override))

    logger.info("=" * 50)
    logger.info(f"AvatarSync {__version__} starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Package log level: {logging.getLevelName(package_level)}")
    if overrides:
        logger.info(f"Logger overrides: {overrides}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for AvatarSync."""
    parser = argparse.ArgumentParser(
        description="AvatarSync - lip-synced avatar audio with silence nudging",
        epilog="Replays a WAV file as streamed model audio; nudges are answered by replaying it again."
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for avatarsync.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--replay",
        type=str,
        required=True,
        help="16-bit PCM WAV file streamed as the model's audio output"
    )

    parser.add_argument(
        "--pace",
        type=float,
        default=1.0,
        help="Streaming pace relative to real time; 0 sends all packets at once (default: 1.0)"
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=60.0,
        help="Stop after this many seconds unless the session terminates first (default: 60)"
    )

    parser.add_argument(
        "--immediate",
        action="store_true",
        help="Play packets as they arrive instead of waiting for visemes"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"AvatarSync v{__version__}"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
        if args.immediate:
            server.config.set('sync.synchronized', False)
        ok = asyncio.run(server.run(args.replay, args.pace, args.duration))
        server.print_report()
        if not ok:
            sys.exit(1)
    except KeyboardInterrupt:
        print("\nGoodbye!")
    except Exception as e:
        print(f"Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
