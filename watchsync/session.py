"""
Session credential handling for watchsync.

The bearer token lives in a dotenv file next to the other app data and is
written by 'watchsync login'. Listeners are told when the token changes
('changed', token) or goes away ('removed', reason).
"""

import os
import logging
import pathlib
import threading

from dotenv import dotenv_values, set_key, unset_key

from watchsync.events import EventEmitter

logger = logging.getLogger(__name__)

TOKEN_ENV_KEY = "WATCHSYNC_ACCESS_TOKEN"


class SessionManager:
    """Holds the current access token and announces changes to it"""

    def __init__(self, env_file=None, token=None):
        self.env_file = pathlib.Path(env_file) if env_file else None
        self._events = EventEmitter()
        self._lock = threading.RLock()
        self._token = token if token is not None else self._read_token()

    def _read_token(self):
        if self.env_file and self.env_file.exists():
            try:
                return dotenv_values(self.env_file).get(TOKEN_ENV_KEY) or None
            except OSError as e:
                logger.error(f"Could not read access token from {self.env_file}: {e}")
                return None
        return os.environ.get(TOKEN_ENV_KEY) or None

    def add_listener(self, event_name, handler):
        return self._events.add_listener(event_name, handler)

    def get_token(self):
        with self._lock:
            return self._token

    @property
    def has_token(self):
        return bool(self.get_token())

    def set_token(self, token):
        """Store a new token and announce it"""
        if not token:
            self.clear_token()
            return
        with self._lock:
            changed = token != self._token
            self._token = token
        if self.env_file:
            try:
                self.env_file.parent.mkdir(parents=True, exist_ok=True)
                self.env_file.touch(exist_ok=True)
                set_key(str(self.env_file), TOKEN_ENV_KEY, token)
                logger.info(f"Access token saved to {self.env_file}")
            except OSError as e:
                logger.error(f"Could not save access token to {self.env_file}: {e}")
        if changed:
            self._events.emit("changed", token)

    def clear_token(self, reason="logout"):
        """
        Forget the token and announce the removal.

        Args:
            reason (str): 'logout' for a user sign-out, 'rejected' when the backend
                refused the token
        """
        with self._lock:
            had_token = bool(self._token)
            self._token = None
        if self.env_file and self.env_file.exists():
            try:
                unset_key(str(self.env_file), TOKEN_ENV_KEY)
            except OSError as e:
                logger.error(f"Could not remove access token from {self.env_file}: {e}")
        if had_token:
            logger.info("Access token cleared")
            self._events.emit("removed", reason)

    def reload(self):
        """Re-read the token file, announcing a change made by another process"""
        token = self._read_token()
        with self._lock:
            if token == self._token:
                return False
            self._token = token
        if token:
            logger.info("Access token changed outside this process")
            self._events.emit("changed", token)
        else:
            logger.info("Access token removed outside this process")
            self._events.emit("removed", "external")
        return True
