"""
History Manager - linear undo/redo for a form editing session

State is an ordered list of graph snapshots plus a cursor. Snapshots are
deep copies taken on push, and every undo/redo hands back a fresh deep copy,
so the caller can keep editing the returned graph without touching history.

Semantics:
- load() seeds exactly one entry at cursor 0 (nothing to undo)
- push() after an undo discards the redo tail
- undo()/redo() clear the caller's step selection, because the restored
  graph may no longer contain the selected step
"""

import logging
from typing import Callable, List, Optional

from formflow.contracts import FormGraph

logger = logging.getLogger(__name__)


class HistoryManager:
    """Undo/redo log of FormGraph snapshots."""

    def __init__(self, clear_selection: Optional[Callable[[], None]] = None):
        """
        Args:
            clear_selection: Called on every successful undo/redo
        """
        self._entries: List[FormGraph] = []
        self._cursor = -1
        self._clear_selection = clear_selection

    # ========================
    # Recording
    # ========================

    def load(self, graph: FormGraph) -> None:
        """Reset the log to a single entry for a freshly loaded graph."""
        self._entries = [graph.clone()]
        self._cursor = 0
        logger.debug("History seeded with initial graph")

    def push(self, graph: FormGraph) -> None:
        """
        Record a new editing state.

        Truncates everything after the cursor, appends a deep copy and moves
        the cursor onto it.
        """
        if self._cursor < 0:
            self.load(graph)
            return

        del self._entries[self._cursor + 1:]
        self._entries.append(graph.clone())
        self._cursor = len(self._entries) - 1
        logger.debug(f"History push: {len(self._entries)} entries, cursor={self._cursor}")

    # ========================
    # Navigation
    # ========================

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self._cursor < len(self._entries) - 1

    @property
    def cursor(self) -> int:
        return self._cursor

    def undo(self) -> Optional[FormGraph]:
        """
        Step back one entry.

        Returns:
            Deep copy of the restored graph, or None when there is nothing to undo
        """
        if not self.can_undo:
            return None

        self._cursor -= 1
        return self._restore()

    def redo(self) -> Optional[FormGraph]:
        """
        Step forward one entry.

        Returns:
            Deep copy of the restored graph, or None when there is nothing to redo
        """
        if not self.can_redo:
            return None

        self._cursor += 1
        return self._restore()

    def _restore(self) -> FormGraph:
        if self._clear_selection is not None:
            self._clear_selection()
        logger.debug(f"History restore: cursor={self._cursor}/{len(self._entries) - 1}")
        return self._entries[self._cursor].clone()

    # ========================
    # Inspection
    # ========================

    def snapshot(self, index: int) -> FormGraph:
        """
        Deep copy of the entry at index.

        Raises:
            IndexError: If index is out of range
        """
        if index < 0 or index >= len(self._entries):
            raise IndexError(f"History entry {index} does not exist")
        return self._entries[index].clone()

    def current(self) -> Optional[FormGraph]:
        """Deep copy of the entry under the cursor (None before load())."""
        if self._cursor < 0:
            return None
        return self._entries[self._cursor].clone()

    def __len__(self) -> int:
        return len(self._entries)
