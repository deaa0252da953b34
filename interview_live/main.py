"""Main application entry point for interview-live."""

import sys
import signal
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.live import Live

from .config import InterviewLiveConfig
from .connection import ConnectionManager, LiveCredentials
from .errors import InterviewLiveError
from .media.devices import list_devices
from .models.session import SessionStatus
from .services import SessionController, SessionStore
from .ui import SessionScreen, print_devices

logger = logging.getLogger(__name__)


def setup_logging(config: InterviewLiveConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/interview_live.log')
    console_output = config.get('logging.console_output', True)

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("interview-live starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_controller(config: InterviewLiveConfig, subject_id: str,
                     time_limit: Optional[float] = None) -> SessionController:
    """Wire a SessionController from configuration."""
    connection_settings = config.connection
    credentials = LiveCredentials(
        api_key=connection_settings.resolve_api_key(),
        credentials_path=connection_settings.credentials_path,
    )

    session_settings = config.session
    if time_limit is not None:
        session_settings = session_settings.model_copy(update={"time_limit_minutes": time_limit})

    return SessionController(
        subject_id=subject_id,
        connection_factory=lambda: ConnectionManager.from_settings(connection_settings, credentials),
        connect_options=config.get_connect_options(),
        device_config=config.get_device_config(),
        settings=session_settings,
        store=SessionStore(config.get_data_directory()),
    )


async def run_session(controller: SessionController, console: Console) -> int:
    """Run one session until the time limit, an error or Ctrl-C."""
    screen = SessionScreen(controller, console)
    finished = asyncio.Event()

    def on_status(status: SessionStatus) -> None:
        if status.is_terminal:
            finished.set()

    controller.on_error = screen.on_error
    controller.on_status = on_status

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, finished.set)
    except NotImplementedError:
        logger.debug("Signal handlers not supported on this platform")

    await controller.start()
    with Live(screen.render(), console=console, refresh_per_second=4) as live:
        while not finished.is_set():
            live.update(screen.render())
            try:
                await asyncio.wait_for(finished.wait(), timeout=0.25)
            except asyncio.TimeoutError:
                pass
        if controller.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
            await controller.complete()
        live.update(screen.render())

    if controller.result is not None:
        screen.print_result(controller.result)
        return 0
    return 1


async def run_connection_test(controller: SessionController, console: Console) -> int:
    console.print("🔧 Testing connection to the live endpoint...", style="blue")
    if await controller.test_connection():
        console.print("✅ Connection OK", style="green")
        return 0
    console.print("❌ Connection failed", style="red")
    return 1


def main() -> None:
    """Main entry point for interview-live."""
    parser = argparse.ArgumentParser(
        description="interview-live - Real-time AI interview session"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: looks for interview_live.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: INFO)"
    )

    parser.add_argument(
        "--subject",
        type=str,
        default="anonymous",
        help="Interview subject identifier (default: anonymous)"
    )

    parser.add_argument(
        "--time-limit",
        type=float,
        help="Session time limit in minutes (overrides config)"
    )

    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List capture devices and exit"
    )

    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Check that the live endpoint accepts a connection and exit"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="interview-live v0.1.0"
    )

    args = parser.parse_args()
    console = Console()

    try:
        config = InterviewLiveConfig(args.config)
        setup_logging(config, args.log_level)

        if args.list_devices:
            print_devices(list_devices(include_video=config.video.enabled), console)
            return

        controller = build_controller(config, args.subject, args.time_limit)
        if args.test_connection:
            sys.exit(asyncio.run(run_connection_test(controller, console)))
        sys.exit(asyncio.run(run_session(controller, console)))
    except KeyboardInterrupt:
        console.print("\n👋 Goodbye!")
    except (InterviewLiveError, ValueError, FileNotFoundError) as e:
        message = e.user_message if isinstance(e, InterviewLiveError) else str(e)
        console.print(f"❌ Error: {message}", style="red")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
