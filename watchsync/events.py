"""
Small in-process event hub used for session, visibility and realtime events.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class EventEmitter:
    """Registers handlers per event name and calls them on emit()"""

    def __init__(self):
        self._listeners = {}
        self._lock = threading.RLock()

    def add_listener(self, event_name, handler):
        """
        Register `handler` for `event_name`.

        Returns:
            callable: Removes the handler again when called
        """
        with self._lock:
            self._listeners.setdefault(event_name, []).append(handler)

        def remove():
            self.remove_listener(event_name, handler)
        return remove

    def remove_listener(self, event_name, handler):
        with self._lock:
            handlers = self._listeners.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

    def listener_count(self, event_name):
        with self._lock:
            return len(self._listeners.get(event_name, []))

    def emit(self, event_name, *args):
        with self._lock:
            handlers = list(self._listeners.get(event_name, []))
        for handler in handlers:
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Listener for '{event_name}' failed: {e}", exc_info=True)
        return len(handlers)


class VisibilitySignal(EventEmitter):
    """Foreground/background state of the host, emitting 'change' with the new visibility"""

    def __init__(self, visible=True):
        super().__init__()
        self._visible = visible

    def is_visible(self):
        return self._visible

    def set_visible(self, visible):
        visible = bool(visible)
        if visible == self._visible:
            return
        self._visible = visible
        logger.debug(f"Visibility changed: {'visible' if visible else 'hidden'}")
        self.emit("change", visible)
