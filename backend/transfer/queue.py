"""Ordered download queue with interchangeable scheduling policies."""

import logging
from typing import Iterator

from config import PRIORITY_JUMP_THRESHOLD
from transfer.models import ItemStatus, SchedulingPolicy, TransferQueueItem

logger = logging.getLogger(__name__)


class TransferQueue:
    """
    Holds waiting and running items in dispatch order. Completed items leave
    the queue. Items at or above the jump threshold always sort ahead of the
    rest; within each group the active policy decides.
    """

    def __init__(
        self,
        policy: SchedulingPolicy = SchedulingPolicy.FCFS,
        jump_threshold: int = PRIORITY_JUMP_THRESHOLD,
    ) -> None:
        self._items: list[TransferQueueItem] = []
        self.policy = SchedulingPolicy(policy)
        self.jump_threshold = jump_threshold

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[TransferQueueItem]:
        return iter(list(self._items))

    def get(self, item_id: int) -> TransferQueueItem | None:
        return next((i for i in self._items if i.id == item_id), None)

    def is_urgent(self, item: TransferQueueItem) -> bool:
        return item.priority >= self.jump_threshold

    def enqueue(self, item: TransferQueueItem) -> None:
        if self.is_urgent(item):
            self._items.insert(0, item)
        else:
            self._items.append(item)

    def _policy_key(self, item: TransferQueueItem) -> tuple:
        if self.policy == SchedulingPolicy.SJF:
            return (item.size, item.arrival_time)
        if self.policy == SchedulingPolicy.PRIORITY:
            return (-item.priority, item.arrival_time)
        return (item.arrival_time,)

    def order(self) -> list[TransferQueueItem]:
        """Apply the active policy in place (stable) and return the ordering."""
        self._items.sort(key=lambda i: (not self.is_urgent(i), *self._policy_key(i)))
        return list(self._items)

    def next(self) -> TransferQueueItem | None:
        """First waiting item under the active policy."""
        return next(
            (i for i in self.order() if i.status == ItemStatus.WAITING), None
        )

    def start(self, item_id: int, now: float) -> TransferQueueItem:
        item = self._require(item_id)
        if item.status != ItemStatus.WAITING:
            raise ValueError(f"Transfer {item_id} is {item.status.value}, cannot start")
        item.status = ItemStatus.RUNNING
        item.start_time = now
        return item

    def complete(self, item_id: int, now: float) -> TransferQueueItem:
        item = self._require(item_id)
        if item.status != ItemStatus.RUNNING:
            raise ValueError(f"Transfer {item_id} is {item.status.value}, cannot complete")
        item.status = ItemStatus.COMPLETED
        item.end_time = now
        self._items.remove(item)
        return item

    def remove(self, item_id: int) -> TransferQueueItem | None:
        item = self.get(item_id)
        if item is not None:
            self._items.remove(item)
        return item

    def move(self, item_id: int, target_item_id: int) -> bool:
        """
        Drag-to-reorder: put a waiting item at the target's position, then
        rewrite every priority to match (top of the list = highest value).
        The policy switches to PRIORITY so the manual order is what dispatches.
        """
        self.order()
        item = self.get(item_id)
        target = self.get(target_item_id)
        if item is None or target is None or item is target:
            return False
        if item.status != ItemStatus.WAITING:
            logger.debug(f"Transfer {item_id} is {item.status.value}, not reorderable")
            return False

        target_index = self._items.index(target)
        self._items.remove(item)
        self._items.insert(target_index, item)

        total = len(self._items)
        for index, entry in enumerate(self._items):
            entry.priority = total - index
        self.policy = SchedulingPolicy.PRIORITY
        return True

    def waiting(self) -> list[TransferQueueItem]:
        return [i for i in self._items if i.status == ItemStatus.WAITING]

    def running(self) -> list[TransferQueueItem]:
        return [i for i in self._items if i.status == ItemStatus.RUNNING]

    def _require(self, item_id: int) -> TransferQueueItem:
        item = self.get(item_id)
        if item is None:
            raise KeyError(f"Transfer {item_id} is not queued")
        return item
