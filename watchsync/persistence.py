"""
Local persistence for watchsync.

The progress map is mirrored into a durable key-value slot so it survives
restarts. Writes are debounced; reads happen at startup and on explicit
refreshes. A broken or unavailable slot never takes the engine down: the
in-memory store stays authoritative for the session.
"""

import os
import json
import logging
import pathlib
import threading

from watchsync.exceptions import PersistenceError

logger = logging.getLogger(__name__)

PROGRESS_SLOT_KEY = "viewingProgress"
THUMBNAIL_PREFIX = "continue_watching_image_"
SAVE_TASK = "persistence-save"
DEFAULT_SAVE_DELAY = 2.0


class MemorySlot:
    """Durable slot stand-in that lives only as long as the process"""

    def __init__(self, initial=None):
        self._data = dict(initial or {})

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._data[key] = value

    def remove(self, key):
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class FileSlot:
    """Durable key-value slot stored as a single JSON object of strings in the app data directory"""

    def __init__(self, app_data_dir: pathlib.Path, slot_file="local_storage.json"):
        self.app_data_dir = pathlib.Path(app_data_dir)
        self.slot_file = self.app_data_dir / slot_file
        self._lock = threading.RLock()
        self._data = self._load_slot()

    def _load_slot(self):
        """Load the slot file, starting empty if it is missing or unreadable"""
        if not os.path.exists(self.slot_file):
            return {}
        try:
            with open(self.slot_file, 'r', encoding='utf-8') as f:
                content = f.read().strip()
            if not content:
                logger.debug("Slot file exists but is empty. Starting with empty slot.")
                return {}
            data = json.loads(content)
            if not isinstance(data, dict):
                logger.error(f"Slot file {self.slot_file} does not hold a JSON object, ignoring it")
                return {}
            return {str(k): v for k, v in data.items() if isinstance(v, str)}
        except json.JSONDecodeError as e:
            logger.error(f"Error decoding slot file {self.slot_file}: {e}")
        except OSError as e:
            logger.error(f"Error loading slot file {self.slot_file}: {e}")
        return {}

    def _write_slot(self):
        try:
            self.app_data_dir.mkdir(parents=True, exist_ok=True)
            tmp_file = self.slot_file.with_suffix(self.slot_file.suffix + ".tmp")
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, indent=4)
            os.replace(tmp_file, self.slot_file)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write slot file {self.slot_file}: {e}") from e

    def get(self, key):
        with self._lock:
            return self._data.get(key)

    def set(self, key, value):
        if not isinstance(value, str):
            raise PersistenceError(f"Slot values must be strings, got {type(value).__name__} for '{key}'")
        with self._lock:
            previous = self._data.get(key)
            self._data[key] = value
            try:
                self._write_slot()
            except PersistenceError:
                if previous is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = previous
                raise

    def remove(self, key):
        with self._lock:
            if key not in self._data:
                return
            previous = self._data.pop(key)
            try:
                self._write_slot()
            except PersistenceError:
                self._data[key] = previous
                raise

    def keys(self):
        with self._lock:
            return list(self._data)


def thumbnail_key(content_id, content_type, season=None, episode=None):
    """Slot key of the cached continue-watching thumbnail for a title"""
    if content_type == "movie":
        persistent_key = f"{content_id}_movie_movie_movie"
    else:
        persistent_key = f"{content_id}_tv_{season or 'unknown'}_{episode or 'unknown'}"
    return f"{THUMBNAIL_PREFIX}{persistent_key}"


class PersistenceBridge:
    """Mirrors the progress store into a durable slot"""

    def __init__(self, slot, store, scheduler, save_delay=DEFAULT_SAVE_DELAY, after_save=None):
        self.slot = slot
        self.store = store
        self.scheduler = scheduler
        self.save_delay = save_delay
        # called with the saved snapshot once a debounced save has run
        self.after_save = after_save

    def schedule_save(self):
        """Save after `save_delay` seconds without further calls"""
        self.scheduler.schedule(SAVE_TASK, self._debounced_save, self.save_delay)

    def _debounced_save(self):
        snapshot = self.store.snapshot()
        self.save_now(snapshot)
        if self.after_save:
            self.after_save(snapshot)

    def cancel_pending(self):
        self.scheduler.cancel(SAVE_TASK)

    def save_now(self, snapshot=None):
        """
        Write the progress map to the slot immediately.

        Args:
            snapshot (dict, optional): Map to write instead of the store's current state

        Returns:
            bool: True if the slot was written
        """
        if snapshot is None:
            snapshot = self.store.snapshot()
        try:
            payload = json.dumps(snapshot)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize viewing progress for save: {e}")
            return False
        try:
            self.slot.set(PROGRESS_SLOT_KEY, payload)
        except PersistenceError as e:
            logger.error(f"Error saving viewing progress: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error saving viewing progress: {e}", exc_info=True)
            return False
        logger.debug(f"Saved {len(snapshot)} viewing progress records to local storage")
        return True

    def load_now(self):
        """
        Read the progress map from the slot.

        Returns:
            dict: The stored map, or {} if the slot is empty, unreadable or malformed
        """
        try:
            raw = self.slot.get(PROGRESS_SLOT_KEY)
        except PersistenceError as e:
            logger.error(f"Error reading viewing progress from local storage: {e}")
            return {}
        except Exception as e:
            logger.error(f"Unexpected error reading viewing progress: {e}", exc_info=True)
            return {}

        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Discarding malformed viewing progress in local storage: {e}")
            return {}
        if not isinstance(parsed, dict):
            logger.error(f"Discarding viewing progress of type {type(parsed).__name__} in local storage")
            return {}
        return parsed

    # --- Cached thumbnails ---

    def get_thumbnail_url(self, content_id, content_type, season=None, episode=None):
        try:
            return self.slot.get(thumbnail_key(content_id, content_type, season, episode))
        except PersistenceError as e:
            logger.error(f"Error reading cached thumbnail: {e}")
            return None

    def forget_thumbnail(self, content_id, content_type, season=None, episode=None):
        try:
            self.slot.remove(thumbnail_key(content_id, content_type, season, episode))
        except PersistenceError as e:
            logger.error(f"Error removing cached thumbnail: {e}")

    def forget_all_thumbnails(self):
        try:
            for key in self.slot.keys():
                if key.startswith(THUMBNAIL_PREFIX):
                    self.slot.remove(key)
        except PersistenceError as e:
            logger.error(f"Error clearing cached thumbnails: {e}")
