"""
Single-slot undo for removals.

Only the most recently removed item can be brought back, and only for a few
seconds after it was removed.
"""

import logging

logger = logging.getLogger(__name__)

EXPIRE_TASK = "undo-expire"
DEFAULT_UNDO_TIMEOUT = 5.0


class UndoBuffer:
    """Keeps the last removed item and hands it back to the section's restore handler"""

    def __init__(self, scheduler, timeout=DEFAULT_UNDO_TIMEOUT):
        self.scheduler = scheduler
        self.timeout = timeout
        self._handlers = {}
        self._pending = None

    def set_restore_handler(self, section, handler):
        self._handlers[section] = handler

    def remove_restore_handler(self, section):
        self._handlers.pop(section, None)

    def add_deleted_item(self, section, item, timeout=None):
        """Offer a removed item for undo, replacing whatever was offered before"""
        self._pending = (section, item)
        self.scheduler.schedule(EXPIRE_TASK, self.discard, self.timeout if timeout is None else timeout)
        logger.debug(f"Undo available for '{item.get('title', item.get('id'))}' in {section}")

    def peek(self):
        """The pending (section, item) pair, or None"""
        return self._pending

    def discard(self):
        self._pending = None
        self.scheduler.cancel(EXPIRE_TASK)

    def undo(self):
        """
        Restore the pending item through its section's handler.

        Returns:
            bool: True if an item was handed back
        """
        if self._pending is None:
            logger.info("Nothing to undo")
            return False
        section, item = self._pending
        handler = self._handlers.get(section)
        if handler is None:
            logger.warning(f"No restore handler registered for '{section}'")
            return False
        self.discard()
        handler(item)
        logger.info(f"Restored '{item.get('title', item.get('id'))}' to {section}")
        return True
