"""
Named, cancellable timers for watchsync.

Every delayed action in the engine (debounced saves and pushes, the polling
loop, delayed removals) goes through one TaskScheduler. Scheduling a name that
is already pending cancels the pending run first.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Runs named tasks on threading.Timer threads with cancel-and-reschedule semantics"""

    def __init__(self):
        self._timers = {}
        self._lock = threading.RLock()
        self._closed = False

    @property
    def closed(self):
        return self._closed

    def schedule(self, name, task, delay):
        """
        Run `task` after `delay` seconds, replacing any pending task with the same name.

        Returns:
            bool: False if the scheduler has been shut down
        """
        with self._lock:
            if self._closed:
                logger.debug(f"Scheduler closed, not scheduling '{name}'")
                return False
            self._cancel_locked(name)
            timer = threading.Timer(max(0.0, delay), self._run, args=(name, task))
            timer.daemon = True
            timer.name = f"watchsync-{name}"
            self._timers[name] = timer
            timer.start()
            return True

    def _run(self, name, task):
        with self._lock:
            if self._closed or self._timers.get(name) is not threading.current_thread():
                return
            del self._timers[name]
        try:
            task()
        except Exception as e:
            logger.error(f"Scheduled task '{name}' failed: {e}", exc_info=True)

    def _cancel_locked(self, name):
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()
            return True
        return False

    def cancel(self, name):
        with self._lock:
            return self._cancel_locked(name)

    def is_scheduled(self, name):
        with self._lock:
            return name in self._timers

    def cancel_all(self):
        with self._lock:
            for name in list(self._timers):
                self._cancel_locked(name)

    def shutdown(self):
        """Cancel everything and refuse further scheduling"""
        with self._lock:
            self._closed = True
            self.cancel_all()
        logger.debug("Scheduler shut down")
