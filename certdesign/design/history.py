from __future__ import annotations

import copy
import logging
from typing import List, Optional, Sequence

from .. import config
from .elements import Element


logger = logging.getLogger(__name__)


class HistoryManager:
    """
    Linear undo/redo over deep-copied element lists.

    ``commit`` drops any redo branch past the cursor before appending. With a
    ``limit`` the oldest snapshots are discarded once it is exceeded.
    """

    def __init__(self, initial: Sequence[Element] = (), limit: Optional[int] = None) -> None:
        if limit is None:
            limit = config.HISTORY_LIMIT
        if limit is not None and limit < 1:
            raise ValueError("History limit must be at least 1")
        self.limit = limit
        self._snapshots: List[List[Element]] = [copy.deepcopy(list(initial))]
        self._cursor = 0

    def reset(self, elements: Sequence[Element]) -> None:
        self._snapshots = [copy.deepcopy(list(elements))]
        self._cursor = 0

    def commit(self, elements: Sequence[Element]) -> None:
        del self._snapshots[self._cursor + 1 :]
        self._snapshots.append(copy.deepcopy(list(elements)))
        if self.limit is not None and len(self._snapshots) > self.limit:
            overflow = len(self._snapshots) - self.limit
            del self._snapshots[:overflow]
        self._cursor = len(self._snapshots) - 1
        logger.debug("History commit, %d snapshot(s), cursor %d", len(self._snapshots), self._cursor)

    def undo(self) -> Optional[List[Element]]:
        if not self.can_undo:
            return None
        self._cursor -= 1
        return copy.deepcopy(self._snapshots[self._cursor])

    def redo(self) -> Optional[List[Element]]:
        if not self.can_redo:
            return None
        self._cursor += 1
        return copy.deepcopy(self._snapshots[self._cursor])

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._snapshots) - 1

    @property
    def current(self) -> List[Element]:
        return copy.deepcopy(self._snapshots[self._cursor])

    def __len__(self) -> int:
        return len(self._snapshots)
