"""
Inbound snapshot delivery for watchsync.

With a realtime channel the backend pushes 'viewingProgress:updated' events
and no polling happens. Without one, PollingFallback pulls the snapshot on
an adaptive interval, only while the host is visible.
"""

import logging

from watchsync.backend_sync import serialize_snapshot
from watchsync.exceptions import NetworkError

logger = logging.getLogger(__name__)

UPDATE_EVENT = "viewingProgress:updated"
POLL_TASK = "progress-poll"
DEFAULT_POLL_INTERVAL = 30.0
MAX_POLL_INTERVAL = 120.0
BACKOFF_FACTOR = 1.5


class RealtimeChannel:
    """Applies viewing progress snapshots pushed over a realtime connection"""

    def __init__(self, realtime, store, sync_client):
        self.realtime = realtime
        self.store = store
        self.sync_client = sync_client
        self._remove_listener = None

    @property
    def attached(self):
        return self._remove_listener is not None

    def attach(self):
        if self._remove_listener is not None:
            return
        self._remove_listener = self.realtime.add_listener(UPDATE_EVENT, self.handle_update)
        logger.info("Listening for realtime viewing progress updates")

    def detach(self):
        if self._remove_listener is None:
            return
        try:
            self._remove_listener()
        except Exception as e:
            logger.error(f"Failed to remove realtime listener: {e}", exc_info=True)
        self._remove_listener = None
        logger.info("Stopped listening for realtime viewing progress updates")

    def handle_update(self, data):
        """
        Handle one realtime payload ({'userId': ..., 'viewingProgress': {...}}).

        Returns:
            bool: True if the local state was replaced
        """
        if self._remove_listener is None:
            return False
        if not isinstance(data, dict) or not data.get("userId") or not isinstance(data.get("viewingProgress"), dict):
            logger.debug(f"Ignoring realtime payload without userId/viewingProgress: {data!r}")
            return False

        incoming = data["viewingProgress"]
        logger.info(f"Received realtime viewing progress update: {len(incoming)} items")
        if serialize_snapshot(self.store.snapshot()) == serialize_snapshot(incoming):
            return False

        logger.info("Viewing progress changed via realtime channel, updating local state")
        return self.sync_client.apply_snapshot(incoming)


class PollingFallback:
    """Adaptive, visibility-gated polling of the backend snapshot"""

    def __init__(self, sync_client, session, visibility, scheduler, is_initialized,
                 base_interval=DEFAULT_POLL_INTERVAL, max_interval=MAX_POLL_INTERVAL):
        self.sync_client = sync_client
        self.session = session
        self.visibility = visibility
        self.scheduler = scheduler
        self.is_initialized = is_initialized
        self.base_interval = base_interval
        self.max_interval = max_interval
        self.interval = base_interval
        self.running = False
        self._remove_visibility_listener = None

    def start(self):
        """Start polling; the first poll runs right away if the host is visible"""
        if self.running:
            logger.debug("Polling already running")
            return False
        self.running = True
        self.interval = self.base_interval
        self._remove_visibility_listener = self.visibility.add_listener("change", self._on_visibility_change)
        if self.visibility.is_visible():
            self.scheduler.schedule(POLL_TASK, self.poll, 0)
        logger.info("Polling fallback started")
        return True

    def stop(self):
        if not self.running:
            return False
        self.running = False
        self.scheduler.cancel(POLL_TASK)
        if self._remove_visibility_listener:
            self._remove_visibility_listener()
            self._remove_visibility_listener = None
        logger.info("Polling fallback stopped")
        return True

    def _on_visibility_change(self, visible):
        if not self.running:
            return
        if visible:
            logger.debug("Host visible again, polling now")
            self.scheduler.schedule(POLL_TASK, self.poll, 0)
        else:
            logger.debug("Host hidden, pausing polling")
            self.scheduler.cancel(POLL_TASK)

    def _should_poll(self):
        return self.running and self.visibility.is_visible()

    def poll(self):
        """
        Pull once and schedule the next poll.

        A successful pull resets the interval; a failure stretches it by 1.5x,
        never past max_interval.
        """
        if not self._should_poll():
            return
        if not self.session.has_token:
            logger.debug("No access token, polling idles until a new one is set")
            return

        if self.is_initialized():
            try:
                snapshot = self.sync_client.fetch_snapshot()
            except NetworkError as e:
                self.interval = min(self.max_interval, max(self.base_interval, self.interval * BACKOFF_FACTOR))
                logger.warning(f"Periodic viewing progress refresh failed: {e}. Next attempt in {self.interval:.1f}s")
            else:
                if self.sync_client.apply_if_changed(snapshot):
                    logger.info("Backend viewing progress changed, local state replaced")
                self.interval = self.base_interval

        if self._should_poll() and self.session.has_token:
            self.scheduler.schedule(POLL_TASK, self.poll, self.interval)
