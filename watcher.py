from __future__ import annotations

import argparse
import logging
import os
import queue
import signal
import sys
import threading
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, List, Optional

from config import ConfigError, RelayConfig, load_config
from processors.arrival import ArrivalHandler, TerminalDirs
from processors.classifier import is_descriptor
from processors.events import ArrivalEvent
from processors.file_processor import ensure_dir, wait_for_stable
from processors.uploader import CredentialsAuthorLookup, SlackSink, Uploader

try:
    from watchdog.observers import Observer
    from watchdog.events import FileSystemEventHandler
except Exception:  # watchdog not available
    print("Required package 'watchdog' is not installed. Install with: python -m pip install watchdog")
    sys.exit(1)


LOGGER_NAME = "image_relay"


class ArrivalEventHandler(FileSystemEventHandler):
    """Turns watchdog creation events into arrival events.

    Only creations of regular files are forwarded; moves, modifications and
    deletions never trigger processing.
    """

    def __init__(self, logger: logging.Logger, submit: Callable[[ArrivalEvent], None]) -> None:
        super().__init__()
        self.logger = logger
        self.submit = submit

    def on_created(self, event):
        # Ignore directories
        if event.is_directory:
            return

        path = Path(os.fsdecode(event.src_path))
        self.logger.info("New file detected: %s", path)
        try:
            self.submit(ArrivalEvent(path))
        except Exception:
            self.logger.exception("Could not queue %s", path)


@dataclass(frozen=True)
class WatchTarget:
    """The watch directory and its terminal directories."""

    watch_dir: Path
    processed_dir: Path
    discard_dir: Path

    @classmethod
    def for_directory(
        cls,
        watch_dir: os.PathLike | str,
        processed_dir: Optional[os.PathLike | str] = None,
        discard_dir: Optional[os.PathLike | str] = None,
    ) -> "WatchTarget":
        watch = Path(os.path.abspath(watch_dir))
        processed = Path(os.path.abspath(processed_dir)) if processed_dir else watch.parent / "processed"
        discard = Path(os.path.abspath(discard_dir)) if discard_dir else watch.parent / "discard"
        return cls(watch, processed, discard)

    @property
    def terminals(self) -> TerminalDirs:
        return TerminalDirs(processed=self.processed_dir, discard=self.discard_dir)

    def prepare(self) -> None:
        ensure_dir(self.watch_dir)
        ensure_dir(self.processed_dir)
        ensure_dir(self.discard_dir)


class DirectoryWatcher:
    """Watches one directory and feeds new files to an arrival handler.

    Events go into a bounded queue consumed by `workers` threads. With the
    default single worker, arrivals are handled strictly in the order they
    were observed; with more workers the order is best effort and the
    handler's lock still keeps processing serialized.
    """

    def __init__(
        self,
        target: WatchTarget,
        handler: ArrivalHandler,
        logger: Optional[logging.Logger] = None,
        workers: int = 1,
        queue_size: int = 1000,
        settle_seconds: float = 0.5,
        max_tries: int = 10,
        observer_factory: Callable[[], Observer] = Observer,
        health_interval: float = 1.0,
    ) -> None:
        self.target = target
        self.handler = handler
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.workers = max(workers, 1)
        self.settle_seconds = settle_seconds
        self.max_tries = max_tries
        self.observer_factory = observer_factory
        self.health_interval = health_interval
        self.events: "queue.Queue[Optional[ArrivalEvent]]" = queue.Queue(maxsize=queue_size)
        self.event_handler = ArrivalEventHandler(self.logger, self.submit)
        self.observer = None
        self._threads: List[threading.Thread] = []

    def submit(self, event: ArrivalEvent) -> None:
        """Queue an arrival; blocks while the queue is full."""
        self.events.put(event)

    def scan_existing(self) -> int:
        """Queue descriptors already sitting in the watch directory."""
        count = 0
        for path in sorted(self.target.watch_dir.iterdir()):
            if path.is_file() and is_descriptor(path):
                self.submit(ArrivalEvent(path))
                count += 1
        if count:
            self.logger.info("Queued %s existing descriptor(s) from %s", count, self.target.watch_dir)
        return count

    def start(self) -> None:
        self.target.prepare()
        for i in range(self.workers):
            thread = threading.Thread(target=self._work, name=f"arrival-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        self._subscribe()

    def run(self, stop_event: threading.Event, scan_existing: bool = False) -> None:
        """Watch until `stop_event` is set, then shut down cleanly."""
        self.start()
        if scan_existing:
            self.scan_existing()
        self.logger.info("Watching: %s", self.target.watch_dir)
        try:
            while not stop_event.wait(self.health_interval):
                if self._watch_lost():
                    self.logger.error("Watch on %s was lost, subscribing again", self.target.watch_dir)
                    self._resubscribe()
        finally:
            self.stop()

    def stop(self) -> None:
        """Unsubscribe, let queued and in-flight arrivals finish, stop workers."""
        self._unsubscribe()
        for _ in self._threads:
            self.events.put(None)
        for thread in self._threads:
            thread.join()
        self._threads = []
        self.logger.info("Stopped watching %s", self.target.watch_dir)

    def join(self) -> None:
        """Block until every queued arrival has been handled."""
        self.events.join()

    def _watch_lost(self) -> bool:
        observer = self.observer
        if observer is None or not observer.is_alive():
            return True
        if not self.target.watch_dir.is_dir():
            return True
        # watchdog runs each watch on its own emitter thread, which exits
        # when the watched directory goes away
        emitters = getattr(observer, "emitters", None)
        if emitters is None:
            return False
        return not emitters or not all(emitter.is_alive() for emitter in emitters)

    def _resubscribe(self) -> None:
        try:
            self.target.prepare()
        except OSError:
            self.logger.exception("Error recreating %s", self.target.watch_dir)
            return
        self._subscribe()

    def _subscribe(self) -> None:
        self._unsubscribe()
        observer = self.observer_factory()
        try:
            observer.schedule(self.event_handler, str(self.target.watch_dir), recursive=False)
            observer.start()
        except OSError:
            self.logger.exception("Error watching directory %s", self.target.watch_dir)
            return
        self.observer = observer

    def _unsubscribe(self) -> None:
        observer, self.observer = self.observer, None
        if observer is None:
            return
        try:
            observer.stop()
            if observer.is_alive():
                observer.join()
        except Exception:
            self.logger.exception("Error stopping observer")

    def _work(self) -> None:
        while True:
            event = self.events.get()
            try:
                if event is None:
                    return
                self._handle(event)
            finally:
                self.events.task_done()

    def _handle(self, event: ArrivalEvent) -> None:
        # Wait for file size to stabilize (basic heuristic to avoid partial-write events)
        if not wait_for_stable(event.path, self.settle_seconds, self.max_tries):
            self.logger.info("File may be incomplete: %s", event.path)
        try:
            result = self.handler.handle(event)
            self.logger.info("Handled %s: %s", event.path, result.state.value)
        except Exception:
            self.logger.exception("Error processing file %s", event.path)


def setup_logger(logfile: str, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    # Rotating file handler to avoid unbounded log growth
    handler = RotatingFileHandler(logfile, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Also log to console for immediate feedback
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch a folder for image descriptors and upload them to Slack")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Optional YAML configuration file")
    parser.add_argument("--path", "-p", default=None, help="Directory to watch")
    parser.add_argument("--processed", "-d", default=None, help="Directory for processed descriptors (default ../processed)")
    parser.add_argument("--discard", default=None, help="Directory for invalid descriptors (default ../discard)")
    parser.add_argument("--credentials", default=None, help="Directory of author credential files")
    parser.add_argument("--logdir", "-l", default=None, help="Directory to write logs to")
    parser.add_argument("--settle", type=float, default=None, help="Seconds to wait between file-size checks for settle heuristic")
    parser.add_argument("--tries", type=int, default=None, help="Number of settle checks before giving up")
    parser.add_argument("--workers", type=int, default=None, help="Number of arrival worker threads")
    parser.add_argument("--scan-existing", action="store_true", help="Process descriptors already in the watch directory")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> RelayConfig:
    """Merge the optional config file with command-line overrides."""
    config = load_config(args.config) if args.config else RelayConfig()

    overrides = {
        "watch_dir": args.path,
        "processed_dir": args.processed,
        "discard_dir": args.discard,
        "credentials_dir": args.credentials,
        "log_dir": args.logdir,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, Path(value))
    if args.settle is not None:
        config.settle_seconds = args.settle
    if args.tries is not None:
        config.max_tries = args.tries
    if args.workers is not None:
        if args.workers < 1:
            raise ConfigError("--workers must be at least 1")
        config.workers = args.workers
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.scan_existing:
        config.scan_existing = True
    return config


def build_watcher(config: RelayConfig, logger: logging.Logger, sink=None) -> DirectoryWatcher:
    """Wire the pipeline described by `config`."""
    target = WatchTarget.for_directory(config.watch_dir, config.processed_dir, config.discard_dir)
    if sink is None:
        sink = SlackSink(config.slack_token, timeout=config.upload_timeout)
    lookup = CredentialsAuthorLookup(config.credentials_dir, logger=logger) if config.credentials_dir else None
    uploader = Uploader(sink, config.slack_channel, author_lookup=lookup, logger=logger)
    handler = ArrivalHandler(
        terminals=target.terminals,
        uploader=uploader,
        root=target.watch_dir,
        upload_attempts=config.upload_attempts,
        discard_on_upload_failure=config.discard_on_upload_failure,
        relocate_images=config.relocate_images,
        logger=logger,
    )
    return DirectoryWatcher(
        target,
        handler,
        logger=logger,
        workers=config.workers,
        queue_size=config.queue_size,
        settle_seconds=config.settle_seconds,
        max_tries=config.max_tries,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = resolve_config(args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    log_dir = os.path.abspath(config.log_dir)
    ensure_dir(log_dir)
    logfile = os.path.join(log_dir, "image_relay.log")
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logger = setup_logger(logfile, level)

    if not config.slack_token or not config.slack_channel:
        logger.error("SLACK_TOKEN and SLACK_CHANNEL must be set")
        return 2

    watcher = build_watcher(config, logger)
    logger.info("Starting image relay")
    logger.info("Logging to: %s", logfile)
    logger.info("Processed dir: %s", watcher.target.processed_dir)
    logger.info("Discard dir: %s", watcher.target.discard_dir)

    stop_event = threading.Event()

    def _signal_handler(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    watcher.run(stop_event, scan_existing=config.scan_existing)
    logger.info("Stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
