"""
Background activity sampler.

Polls the focused window on a fixed interval and appends an event to the
store whenever the (app, title) pair changes. Applications matching the
blacklist are never recorded. The blacklist is re-read from the store on
every poll so edits apply within one interval.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
import threading
import logging

from .storage import EventStore, format_timestamp
from .window import ActiveWindow, WindowUnavailable, get_active_window

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


@dataclass(frozen=True)
class SamplerState:
    """Last recorded (app, title) pair, threaded between polls"""
    last_app: Optional[str] = None
    last_title: Optional[str] = None

    def matches(self, window: ActiveWindow) -> bool:
        return window.app_name == self.last_app and window.title == self.last_title


def is_blacklisted(app_name: str, blacklist: list) -> bool:
    """True if app_name contains any non-blank blacklist entry, ignoring case."""
    lowered = app_name.lower()
    return any(entry and entry.lower() in lowered for entry in blacklist)


class ActivitySampler:
    """
    Record focus changes into an EventStore.

    Usage:
        sampler = ActivitySampler(EventStore())
        sampler.start()
        ...
        sampler.stop()

    Tests can skip the thread and call poll_once() directly:
        state = sampler.poll_once(SamplerState())
    """

    def __init__(
        self,
        storage: EventStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        window_provider: Callable[[], ActiveWindow] = None,
        clock: Callable[[], datetime] = None
    ):
        """
        Args:
            storage: Store that receives new events
            poll_interval: Seconds between polls
            window_provider: Returns the focused window or raises WindowUnavailable
            clock: Returns the current time (defaults to UTC now)
        """
        self.storage = storage
        self.poll_interval = poll_interval
        self.window_provider = window_provider or get_active_window
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start sampling on a background thread. No-op if already running."""
        if self.running:
            logger.warning("Activity sampler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="recall-sampler", daemon=True)
        self._thread.start()
        logger.info("Activity sampler started")

    def stop(self):
        """Stop sampling and wait for the loop to exit"""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self.poll_interval + 1)
        logger.info("Activity sampler stopped")

    def poll_once(self, state: SamplerState) -> SamplerState:
        """Run one poll and return the state for the next one.

        Args:
            state: Last recorded pair from the previous poll.

        Returns:
            The unchanged state if nothing was recorded, otherwise the
            newly observed pair.
        """
        blacklist = self.storage.get_blacklist()

        try:
            window = self.window_provider()
        except WindowUnavailable as e:
            logger.debug(f"Skipping poll: {e}")
            return state

        if is_blacklisted(window.app_name, blacklist):
            return state

        if state.matches(window):
            return state

        try:
            event_id = self.storage.insert_event(
                window.app_name,
                window.title,
                timestamp=format_timestamp(self.clock())
            )
            logger.debug(f"Recorded event {event_id}: {window.app_name} - {window.title[:60]}")
        except Exception as e:
            logger.warning(f"Failed to record {window.app_name}: {e}")

        return SamplerState(last_app=window.app_name, last_title=window.title)

    def run(self):
        """Main polling loop. Returns when stopped or if the store is unusable."""
        try:
            self.storage.init_db()
        except Exception as e:
            logger.error(f"Activity sampler cannot open database, not sampling: {e}")
            return

        state = SamplerState()
        while not self._stop_event.is_set():
            try:
                state = self.poll_once(state)
            except Exception as e:
                logger.warning(f"Sampler poll error: {e}")

            self._stop_event.wait(self.poll_interval)
