import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional

import numpy as np

from paint_core.config import HistoryConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable snapshot of the displayed raster (plus the edit state behind it)."""
    image: np.ndarray
    timestamp: float = field(default_factory=time.time)
    state: Any = None

    @classmethod
    def snapshot(cls, image, state=None):
        image = np.array(image, copy=True)
        image.setflags(write=False)
        return cls(image=image, timestamp=time.time(), state=state)


class HistoryManager:
    """
    Bounded undo/redo stack. Pushing after an undo drops the redo branch;
    the oldest entry is evicted past capacity.
    """

    def __init__(self, capacity: int = HistoryConfig.MAX_ENTRIES):
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self.capacity = capacity
        self._entries: List[HistoryEntry] = []
        self._cursor = -1

    def __len__(self):
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> Optional[HistoryEntry]:
        if not self._entries:
            return None
        return self._entries[self._cursor]

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self._cursor < len(self._entries) - 1

    def push(self, image, state=None) -> HistoryEntry:
        entry = HistoryEntry.snapshot(image, state)
        del self._entries[self._cursor + 1:]
        self._entries.append(entry)
        if len(self._entries) > self.capacity:
            self._entries.pop(0)
        self._cursor = len(self._entries) - 1
        return entry

    def undo(self) -> Optional[HistoryEntry]:
        """Step back; returns the new current entry, or None at the boundary."""
        if not self.can_undo:
            return None
        self._cursor -= 1
        return self._entries[self._cursor]

    def redo(self) -> Optional[HistoryEntry]:
        if not self.can_redo:
            return None
        self._cursor += 1
        return self._entries[self._cursor]

    def reset(self, base, state=None) -> HistoryEntry:
        """Reinitialize to a single entry holding the base."""
        self._entries = [HistoryEntry.snapshot(base, state)]
        self._cursor = 0
        logger.info("History reset.")
        return self._entries[0]

    def clear(self):
        self._entries = []
        self._cursor = -1
