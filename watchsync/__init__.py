"""
Viewing progress tracking and sync for watchsync.
"""

__version__ = "1.0.0"

from .engine import ViewingProgressEngine
from .events import VisibilitySignal
from .persistence import FileSlot, MemorySlot
from .session import SessionManager
from .undo import UndoBuffer
__all__ = [
    'ViewingProgressEngine',
    'VisibilitySignal',
    'FileSlot',
    'MemorySlot',
    'SessionManager',
    'UndoBuffer',
]
