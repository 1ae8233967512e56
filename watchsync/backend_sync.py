"""
Backend synchronization for watchsync.

Pulls replace the local map wholesale (the backend snapshot wins), pushes
send the full local map. Everything here is best-effort: failures are
logged and the engine keeps tracking locally. A 401 clears the stored
credential and suppresses backend calls until a new credential arrives.
"""

import json
import logging

from watchsync import viewing_api
from watchsync.exceptions import CredentialInvalidError, NetworkError

logger = logging.getLogger(__name__)

IMMEDIATE_PUSH_TASK = "backend-immediate-push"
DEFAULT_IMMEDIATE_PUSH_DELAY = 0.5


def serialize_snapshot(snapshot):
    """Canonical JSON used to compare snapshots"""
    return json.dumps(snapshot, sort_keys=True)


class BackendSyncClient:
    """Moves full progress snapshots between the local store and the backend"""

    def __init__(self, store, persistence, session, scheduler, api_url=viewing_api.DEFAULT_API_URL,
                 timeout=viewing_api.DEFAULT_TIMEOUT, immediate_push_delay=DEFAULT_IMMEDIATE_PUSH_DELAY):
        self.store = store
        self.persistence = persistence
        self.session = session
        self.scheduler = scheduler
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.immediate_push_delay = immediate_push_delay
        self.last_backend_snapshot = None
        self._suppressed = False
        self._closed = False

    @property
    def can_sync(self):
        return not self._closed and not self._suppressed and self.session.has_token

    def resume(self):
        """Lift the suppression after a new credential has been set"""
        if self._suppressed:
            logger.info("New credential available, resuming backend sync")
        self._suppressed = False

    def close(self):
        self._closed = True
        self.scheduler.cancel(IMMEDIATE_PUSH_TASK)

    def cancel_pending(self):
        self.scheduler.cancel(IMMEDIATE_PUSH_TASK)

    def _credential_rejected(self, error):
        logger.warning(f"Backend rejected the access token ({error}); clearing it and continuing locally")
        self._suppressed = True
        self.scheduler.cancel(IMMEDIATE_PUSH_TASK)
        self.session.clear_token(reason="rejected")

    # --- Pull ---

    def validate_token(self):
        """
        Check the stored token before the startup pull.

        Returns:
            bool: True if the token was accepted. A rejected token is cleared;
                a timeout or other failure just skips the pull.
        """
        if not self.can_sync:
            return False
        try:
            return viewing_api.validate_token(self.api_url, self.session.get_token())
        except CredentialInvalidError as e:
            self._credential_rejected(e)
        except NetworkError as e:
            logger.warning(f"Token validation failed, skipping backend load: {e}")
        return False

    def fetch_snapshot(self):
        """
        Fetch the backend snapshot without applying it.

        Raises:
            NetworkError: On any failure; a CredentialInvalidError has already
                cleared the credential when it propagates
        """
        if self._closed:
            raise NetworkError("Backend sync client is closed")
        try:
            return viewing_api.get_viewing_progress(self.api_url, self.session.get_token(), timeout=self.timeout)
        except CredentialInvalidError as e:
            self._credential_rejected(e)
            raise

    def apply_snapshot(self, snapshot):
        """Overwrite the store and the local slot with a backend snapshot"""
        if self._closed:
            logger.debug("Backend sync client is closed, dropping snapshot")
            return False
        if not self.store.replace_all(snapshot):
            return False
        self.persistence.save_now(snapshot)
        self.last_backend_snapshot = serialize_snapshot(snapshot)
        logger.info(f"Applied backend snapshot with {len(snapshot)} records")
        return True

    def apply_if_changed(self, snapshot):
        """Apply a snapshot only if it differs from the last one seen from the backend"""
        if serialize_snapshot(snapshot) == self.last_backend_snapshot:
            logger.debug("Backend snapshot unchanged")
            return False
        return self.apply_snapshot(snapshot)

    def pull(self):
        """
        Fetch the backend snapshot and make it the local state.

        Returns:
            dict: The applied snapshot, or None if nothing was applied
        """
        if not self.can_sync:
            logger.debug("No usable access token, skipping backend viewing progress load")
            return None
        try:
            snapshot = self.fetch_snapshot()
        except NetworkError as e:
            logger.error(f"Failed to load viewing progress from backend: {e}")
            return None
        if not self.apply_snapshot(snapshot):
            return None
        return snapshot

    def refresh_from_backend(self):
        """
        Manual refresh from the backend.

        Returns:
            dict: {'success': True, 'data': snapshot} or {'success': False, 'error': message}
        """
        if not self.session.has_token:
            return {"success": False, "error": "No authentication token found"}
        if not self.can_sync:
            return {"success": False, "error": "Backend sync unavailable"}
        try:
            snapshot = self.fetch_snapshot()
        except NetworkError as e:
            logger.error(f"Manual refresh failed: {e}")
            return {"success": False, "error": str(e)}
        if not self.apply_snapshot(snapshot):
            return {"success": False, "error": "Invalid response format"}
        return {"success": True, "data": snapshot}

    # --- Push ---

    def push(self, snapshot=None):
        """
        Send the full local snapshot to the backend.

        Returns:
            bool: True if the backend accepted it
        """
        if not self.can_sync:
            logger.debug("No usable access token, skipping viewing progress push")
            return False
        if snapshot is None:
            snapshot = self.store.snapshot()
        try:
            viewing_api.sync_viewing_progress(self.api_url, self.session.get_token(), snapshot, timeout=self.timeout)
        except CredentialInvalidError as e:
            self._credential_rejected(e)
            return False
        except NetworkError as e:
            logger.error(f"Viewing progress sync failed: {e}")
            return False
        self.last_backend_snapshot = serialize_snapshot(snapshot)
        return True

    def push_if_nonempty(self, snapshot):
        """Push after a debounced save; an empty map is never pushed"""
        if snapshot and self.can_sync:
            if self.push(snapshot):
                logger.debug("Viewing progress automatically synced with backend")

    def schedule_immediate_push(self):
        """Push shortly after a progress update so other devices see it quickly"""
        if not self.can_sync:
            return
        self.scheduler.schedule(IMMEDIATE_PUSH_TASK, self.push, self.immediate_push_delay)
