"""
Item Buffer

Bounded, ordered collection of captured items with per-item selection.
Backed by a deque with maxlen so the cap is enforced by construction: adding
to a full buffer drops the oldest item and keeps the rest in insertion order.

All mutations are synchronous, so they are atomic with respect to the
event loop.
"""

import logging
from collections import Counter, deque
from typing import Iterator

from tagscan.models import MAX_ITEMS, CapturedItem

logger = logging.getLogger(__name__)


class ItemBuffer:
    """FIFO-capped buffer of captured items."""

    def __init__(self, max_items: int = MAX_ITEMS):
        if max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {max_items}")
        self.max_items = max_items
        self._items: deque[CapturedItem] = deque(maxlen=max_items)
        logger.info(f"ItemBuffer initialized: capacity {max_items} items")

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CapturedItem]:
        return iter(list(self._items))

    @property
    def items(self) -> list[CapturedItem]:
        """Snapshot of all items, oldest first."""
        return list(self._items)

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.max_items

    def add(self, item: CapturedItem) -> CapturedItem | None:
        """
        Append an item, auto-selecting it.

        Returns:
            The evicted (oldest) item if the buffer was full, else None
        """
        evicted = self._items[0] if self.is_full else None
        item.selected = True
        self._items.append(item)

        if evicted is not None:
            logger.info(f"Buffer full, evicted oldest item: {evicted}")
        logger.debug(f"Added {item} ({len(self._items)}/{self.max_items})")
        return evicted

    def get(self, item_id: str) -> CapturedItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def toggle_select(self, item_id: str) -> bool:
        """Flip an item's selection. Returns False for unknown ids."""
        item = self.get(item_id)
        if item is None:
            logger.debug(f"toggle_select: unknown item {item_id}")
            return False
        item.selected = not item.selected
        return True

    def select_all(self) -> None:
        for item in self._items:
            item.selected = True

    def deselect_all(self) -> None:
        for item in self._items:
            item.selected = False

    def remove(self, item_id: str) -> bool:
        """Remove one item. Returns False for unknown ids."""
        item = self.get(item_id)
        if item is None:
            logger.debug(f"remove: unknown item {item_id}")
            return False
        self._items.remove(item)
        logger.debug(f"Removed {item}")
        return True

    def clear(self) -> None:
        count = len(self._items)
        self._items.clear()
        if count:
            logger.info(f"Cleared {count} item(s) from buffer")

    def selected_items(self) -> list[CapturedItem]:
        """Selected items in insertion order."""
        return [item for item in self._items if item.selected]

    def counts_by_kind(self) -> dict[str, int]:
        counts = Counter(item.kind.value for item in self._items)
        return dict(counts)

    def get_status(self) -> dict:
        """Get buffer status."""
        return {
            "count": len(self._items),
            "selected": len(self.selected_items()),
            "max_items": self.max_items,
            "is_full": self.is_full,
            "by_kind": self.counts_by_kind(),
        }
