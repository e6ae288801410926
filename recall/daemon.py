"""Recall Daemon Module.

This module implements the long-running process that records window focus
changes. It starts the activity sampler on a background thread, optionally
serves the JSON web API, and shuts down cleanly on SIGTERM/SIGINT.

Example:
    # Run daemon programmatically
    >>> from recall.daemon import RecallDaemon
    >>> daemon = RecallDaemon(enable_web=True)
    >>> daemon.run()  # Runs until interrupted

    # Or via command line
    $ python -m recall.daemon --web
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from .config import Config, ConfigManager
from .sampler import ActivitySampler
from .storage import EventStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: str = "") -> None:
    """Configure root logging to stderr and optionally a file.

    Args:
        level: Log level name such as "DEBUG" or "INFO".
        log_file: Path of an additional log file, empty to skip.
    """
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


class RecallDaemon:
    """Main daemon process coordinating the sampler and the web API.

    Attributes:
        config (Config): Loaded configuration
        storage (EventStore): Shared database interface
        sampler (ActivitySampler): Background focus sampler
    """

    def __init__(self, config: Config = None, enable_web: bool = False,
                 install_signal_handlers: bool = True):
        """Initialize the daemon.

        Args:
            config: Configuration to use (defaults to Config()).
            enable_web: Whether to start the web server.
            install_signal_handlers: Register SIGTERM/SIGINT handlers. Only
                possible from the main thread.
        """
        self.config = config or Config()
        self.enable_web = enable_web
        self.storage = EventStore(str(self.config.storage.db_path))
        self.sampler = ActivitySampler(
            self.storage,
            poll_interval=self.config.sampler.poll_interval_seconds,
        )
        self.web_thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()

    def _start_web_server(self):
        """Serve the JSON API from web/app.py on a daemon thread."""
        from web.app import app, set_storage

        set_storage(self.storage)
        host, port = self.config.web.host, self.config.web.port

        def serve():
            logger.info(f"Starting web server on http://{host}:{port}")
            app.run(host=host, port=port, debug=False, use_reloader=False)

        self.web_thread = threading.Thread(target=serve, name="recall-web", daemon=True)
        self.web_thread.start()

    def start(self):
        """Start the sampler and, if enabled, the web server."""
        logger.info(f"Recall daemon starting (database: {self.storage.db_path})")
        if self.config.sampler.enabled:
            self.sampler.start()
        else:
            logger.info("Sampler disabled by configuration")
        if self.enable_web:
            self._start_web_server()

    def stop(self):
        """Stop the sampler and release run()."""
        if self._stopped.is_set():
            return
        self.sampler.stop()
        self._stopped.set()

    def run(self):
        """Start everything and block until stopped."""
        self.start()
        while not self._stopped.wait(1.0):
            pass
        logger.info("Recall daemon stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recall activity tracking daemon")
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to config.yaml (default: ~/.config/recall/config.yaml)")
    parser.add_argument("--web", action="store_true", help="Enable web API server")
    parser.add_argument("--web-port", type=int, default=None, help="Web server port")
    parser.add_argument("--poll-interval", type=float, default=None,
                        help="Seconds between active window checks (default: 2.0)")
    parser.add_argument("--log-level", default=None,
                        help="Log level, e.g. DEBUG or INFO")
    parser.add_argument("--save-config", action="store_true",
                        help="Write the command line overrides back to the config file")
    return parser


def apply_overrides(manager: ConfigManager, args: argparse.Namespace) -> Config:
    """Apply command line values to the loaded config, persisting them if asked."""
    overrides = [
        ("web", "port", args.web_port),
        ("sampler", "poll_interval_seconds", args.poll_interval),
        ("logging", "level", args.log_level),
    ]
    for section, key, value in overrides:
        if value is None:
            continue
        if args.save_config:
            manager.update(section, key, value)
        else:
            setattr(getattr(manager.config, section), key, value)
    return manager.config


def main(argv=None):
    args = build_parser().parse_args(argv)

    config = apply_overrides(ConfigManager(args.config), args)

    setup_logging(config.logging.level, config.logging.file)

    try:
        daemon = RecallDaemon(config=config, enable_web=args.web)
    except RuntimeError as e:
        logger.error(str(e))
        return 1

    daemon.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
