"""
Viewing progress engine for watchsync.

Wires the store, local persistence, backend sync, inbound snapshot delivery
and undo together behind one object with an explicit init()/dispose()
lifecycle. Public operations never raise: bad input is logged and ignored,
backend trouble degrades to local-only tracking.
"""

import logging

from watchsync.backend_sync import BackendSyncClient, DEFAULT_IMMEDIATE_PUSH_DELAY
from watchsync.events import VisibilitySignal
from watchsync.persistence import DEFAULT_SAVE_DELAY, PersistenceBridge
from watchsync.progress_keys import MOVIE, TV, encode_progress_key
from watchsync.progress_store import ProgressStore
from watchsync.realtime import DEFAULT_POLL_INTERVAL, MAX_POLL_INTERVAL, PollingFallback, RealtimeChannel
from watchsync.scheduler import TaskScheduler
from watchsync.viewing_api import DEFAULT_API_URL, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

UNDO_SECTION = "continueWatching"
CREDENTIAL_PULL_TASK = "credential-pull"
CREDENTIAL_PULL_DELAY = 0.1
MARK_WATCHED_REMOVE_DELAY = 1.0


class ViewingProgressEngine:
    """
    Viewing progress tracking with local persistence and backend sync.

    Args:
        slot: Durable key-value slot (FileSlot, MemorySlot or compatible)
        session: SessionManager (or compatible) holding the access token
        api_url (str): Backend base URL
        realtime: Optional object with add_listener(event, handler) -> remove;
            when absent the engine polls instead
        visibility: Optional VisibilitySignal gating the polling loop
        undo: Optional UndoBuffer receiving removed continue-watching entries
        scheduler: Optional TaskScheduler (a fresh one is created by default)
        clock: Optional callable returning the current aware UTC datetime
    """

    def __init__(self, slot, session, api_url=DEFAULT_API_URL, realtime=None, visibility=None, undo=None,
                 scheduler=None, clock=None, save_delay=DEFAULT_SAVE_DELAY,
                 immediate_push_delay=DEFAULT_IMMEDIATE_PUSH_DELAY, poll_interval=DEFAULT_POLL_INTERVAL,
                 max_poll_interval=MAX_POLL_INTERVAL, request_timeout=DEFAULT_TIMEOUT):
        self.session = session
        self.scheduler = scheduler or TaskScheduler()
        self.visibility = visibility or VisibilitySignal()
        self.undo = undo
        self.store = ProgressStore(clock=clock)
        self.persistence = PersistenceBridge(slot, self.store, self.scheduler, save_delay=save_delay)
        self.sync_client = BackendSyncClient(
            self.store, self.persistence, session, self.scheduler,
            api_url=api_url, timeout=request_timeout, immediate_push_delay=immediate_push_delay,
        )
        self.persistence.after_save = self.sync_client.push_if_nonempty

        self.realtime_channel = None
        self.polling = None
        if realtime is not None:
            self.realtime_channel = RealtimeChannel(realtime, self.store, self.sync_client)
        else:
            self.polling = PollingFallback(
                self.sync_client, session, self.visibility, self.scheduler,
                is_initialized=lambda: self._initialized,
                base_interval=poll_interval, max_interval=max_poll_interval,
            )

        self._initialized = False
        self._disposed = False
        self._unsubscribers = []
        self.store.set_mutation_callback(self._on_store_mutation)

    # --- Lifecycle ---

    @property
    def is_initialized(self):
        return self._initialized

    @property
    def disposed(self):
        return self._disposed

    def init(self):
        """
        Load local state, then let the backend snapshot replace it when reachable,
        and start listening for inbound updates.

        Returns:
            bool: True once the engine is ready
        """
        if self._disposed:
            logger.warning("init() called on a disposed engine")
            return False
        if self._initialized:
            return True

        local = self.persistence.load_now()
        self.store.replace_all(local)
        logger.info(f"Loaded {len(local)} viewing progress records from local storage")

        if self.session.has_token:
            if self.sync_client.validate_token():
                self.sync_client.pull()
        else:
            logger.info("No access token found, skipping backend viewing progress load")

        self._initialized = True
        self._unsubscribers.append(self.session.add_listener("changed", self._on_credential_changed))
        self._unsubscribers.append(self.session.add_listener("removed", self._on_credential_removed))
        if self.undo is not None:
            self.undo.set_restore_handler(UNDO_SECTION, self.restore_to_continue_watching)

        if self.realtime_channel is not None:
            self.realtime_channel.attach()
        elif self.session.has_token:
            self.polling.start()

        logger.info("Viewing progress engine initialized")
        return True

    def flush(self):
        """Write pending changes to local storage and push them now instead of waiting for the debounce"""
        if self._disposed:
            return False
        self.persistence.cancel_pending()
        self.sync_client.cancel_pending()
        snapshot = self.store.snapshot()
        saved = self.persistence.save_now(snapshot)
        self.sync_client.push_if_nonempty(snapshot)
        return saved

    def dispose(self):
        """Tear everything down. No timers, network calls or writes happen afterwards."""
        if self._disposed:
            return
        self._disposed = True
        self.scheduler.shutdown()
        if self.realtime_channel is not None:
            self.realtime_channel.detach()
        if self.polling is not None:
            self.polling.stop()
        self.sync_client.close()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self.undo is not None:
            self.undo.remove_restore_handler(UNDO_SECTION)
        logger.info("Viewing progress engine disposed")

    def _accepting_edits(self, operation):
        if self._disposed:
            logger.warning(f"{operation} ignored: engine has been disposed")
            return False
        if not self._initialized:
            logger.warning(f"{operation} ignored: engine is not initialized")
            return False
        return True

    def _on_store_mutation(self, operation, keys):
        if self._disposed or not self._initialized:
            return
        self.persistence.schedule_save()
        if operation == "update_progress":
            self.sync_client.schedule_immediate_push()

    # --- Session events ---

    def _on_credential_changed(self, token):
        if self._disposed:
            return
        logger.info("Access token changed, reloading viewing progress from backend")
        self.sync_client.resume()
        self.scheduler.schedule(CREDENTIAL_PULL_TASK, self.sync_client.pull, CREDENTIAL_PULL_DELAY)
        if self.polling is not None and not self.polling.running:
            self.polling.start()

    def _on_credential_removed(self, reason="logout"):
        if self._disposed:
            return
        self.scheduler.cancel(CREDENTIAL_PULL_TASK)
        self.sync_client.cancel_pending()
        if self.polling is not None:
            self.polling.stop()
        if reason == "rejected":
            logger.info("Access token rejected by backend, continuing with local-only tracking")
            return

        logger.info("Access token removed, clearing viewing progress and continue watching")
        self.persistence.cancel_pending()
        self.store.replace_all({})
        self.persistence.save_now({})

    # --- Local edits ---

    def start_movie(self, movie):
        if not self._accepting_edits("start_movie"):
            return None
        return self.store.start_movie(movie)

    def start_episode(self, show, season, episode, episode_meta=None):
        if not self._accepting_edits("start_episode"):
            return None
        return self.store.start_episode(show, season, episode, episode_meta)

    def update_progress(self, content_id, content_type, season=None, episode=None, progress=0):
        if not self._accepting_edits("update_progress"):
            return None
        return self.store.update_progress(content_id, content_type, season, episode, progress)

    def remove_from_continue_watching(self, content_id, content_type, season=None, episode=None):
        """
        Remove a title and offer its continue-watching entry for undo.

        Returns:
            bool: True if anything was removed
        """
        if not self._accepting_edits("remove_from_continue_watching"):
            return False

        entry = next(
            (item for item in self.get_continue_watching()
             if item["id"] == content_id and item["type"] == content_type),
            None,
        )
        thumbnail_url = self.persistence.get_thumbnail_url(content_id, content_type, season, episode)

        removed = self.store.remove(content_id, content_type, season, episode)
        self.persistence.forget_thumbnail(content_id, content_type, season, episode)

        if self.undo is not None and entry is not None:
            payload = dict(entry, thumbnailUrl=thumbnail_url) if thumbnail_url else entry
            self.undo.add_deleted_item(UNDO_SECTION, payload)
        return bool(removed)

    def restore_to_continue_watching(self, item):
        if not self._accepting_edits("restore_to_continue_watching"):
            return None
        return self.store.restore(item)

    def mark_as_watched(self, content_id, content_type, season=None, episode=None):
        """Set progress to 100% and drop the title from the list a second later"""
        record = self.update_progress(content_id, content_type, season, episode, 100)
        if record is None:
            return None
        task_name = f"mark-watched-{encode_progress_key(content_id, content_type, season, episode)}"
        self.scheduler.schedule(
            task_name,
            lambda: self.remove_from_continue_watching(content_id, content_type, season, episode),
            MARK_WATCHED_REMOVE_DELAY,
        )
        return record

    def clear_all_progress(self):
        if not self._accepting_edits("clear_all_progress"):
            return
        self.store.clear_all()

    def clear_all_continue_watching(self):
        """Clear all progress and every cached continue-watching thumbnail"""
        if not self._accepting_edits("clear_all_continue_watching"):
            return
        self.store.clear_all()
        self.persistence.forget_all_thumbnails()

    def clear_movies_from_continue_watching(self):
        if not self._accepting_edits("clear_movies_from_continue_watching"):
            return []
        removed = self.store.clear_movies()
        for record in removed:
            self.persistence.forget_thumbnail(record.get("id"), MOVIE)
        return removed

    def clear_tv_shows_from_continue_watching(self):
        if not self._accepting_edits("clear_tv_shows_from_continue_watching"):
            return []
        listed = [item for item in self.get_continue_watching() if item["type"] == TV]
        removed = self.store.clear_tv_shows()
        for item in listed:
            self.persistence.forget_thumbnail(item["id"], TV, item.get("season"), item.get("episode"))
        return removed

    # --- Reads and refreshes ---

    def get_continue_watching(self, now=None):
        return self.store.continue_watching(now=now)

    def has_continue_watching(self, now=None):
        return len(self.get_continue_watching(now=now)) > 0

    def get_progress_record(self, progress_key):
        return self.store.get_progress_record(progress_key)

    def get_progress_for(self, content_id, content_type, season=None, episode=None):
        return self.store.get_progress_for(content_id, content_type, season, episode)

    def get_viewing_progress(self):
        return self.store.snapshot()

    def refresh_from_storage(self):
        """Reload the progress map from local storage"""
        if self._disposed:
            return self.get_continue_watching()
        stored = self.persistence.load_now()
        if stored:
            self.store.replace_all(stored)
        return self.get_continue_watching()

    def refresh_from_backend(self):
        if self._disposed:
            return {"success": False, "error": "Engine has been disposed"}
        return self.sync_client.refresh_from_backend()
