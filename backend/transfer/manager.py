"""
Transfer Manager: admission scheduling for one downloading peer.

Combines the AdmissionGate and the TransferQueue behind a single lock:
enqueue, completion, cancellation, reordering and limit changes all race
on the same list and counter, so each runs as one critical section.
State changes are published as events; UI code subscribes, it does not
take part in scheduling.
"""

import asyncio
import itertools
import logging
import time
from typing import Awaitable, Callable

from config import (
    DEFAULT_PRIORITY,
    MAX_CONCURRENT_TRANSFERS,
    PRIORITY_JUMP_THRESHOLD,
    TRANSFER_TIMEOUT,
)
from transfer.gate import AdmissionGate
from transfer.models import (
    CancelReason,
    FileRef,
    ItemStatus,
    SchedulerMetrics,
    SchedulingPolicy,
    TransferQueueItem,
)
from transfer.queue import TransferQueue

logger = logging.getLogger(__name__)

Launcher = Callable[[TransferQueueItem], Awaitable[None]]


class TransferManager:
    """Decides which pending download may run, and when."""

    def __init__(
        self,
        limit: int = MAX_CONCURRENT_TRANSFERS,
        policy: SchedulingPolicy = SchedulingPolicy.FCFS,
        jump_threshold: int = PRIORITY_JUMP_THRESHOLD,
        transfer_timeout: float | None = TRANSFER_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gate = AdmissionGate(limit)
        self._queue = TransferQueue(policy, jump_threshold)
        self._lock = asyncio.Lock()
        self._clock = clock
        self._transfer_timeout = transfer_timeout
        self._ids = itertools.count(1)
        self._history: list[TransferQueueItem] = []
        self._slots: set[int] = set()  # items currently holding a gate slot
        self._watchdogs: dict[int, asyncio.Task] = {}
        self._runners: dict[int, asyncio.Task] = {}
        self._launcher: Launcher | None = None
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._pending_events: list[tuple[str, dict]] = []

    # --- Wiring ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    def set_launcher(self, launcher: Launcher | None) -> None:
        """
        The coroutine that performs an admitted download. When it returns the
        item completes; when it raises the item is cancelled as failed. Without
        a launcher, callers report completion through complete().
        """
        self._launcher = launcher

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def _publish(self, event_type: str, data: dict) -> None:
        self._pending_events.append((event_type, data))

    async def _flush(self) -> None:
        # Emitted outside the lock so subscribers may call back in.
        events, self._pending_events = self._pending_events, []
        for event_type, data in events:
            await self._emit(event_type, data)

    # --- Introspection ---

    @property
    def gate(self) -> AdmissionGate:
        return self._gate

    @property
    def policy(self) -> SchedulingPolicy:
        return self._queue.policy

    def get(self, item_id: int) -> TransferQueueItem | None:
        item = self._queue.get(item_id)
        if item is None:
            item = next((i for i in self._history if i.id == item_id), None)
        return item

    def items(self) -> list[TransferQueueItem]:
        """Waiting and running items in dispatch order."""
        return self._queue.order()

    def history(self) -> list[TransferQueueItem]:
        return list(self._history)

    def metrics(self) -> SchedulerMetrics:
        done = self._history
        return SchedulerMetrics(
            average_wait=(sum(i.wait_time for i in done) / len(done)) if done else 0.0,
            average_turnaround=(sum(i.turnaround_time for i in done) / len(done)) if done else 0.0,
            utilization=self._gate.utilization(),
            active=self._gate.in_use,
            waiting=len(self._queue.waiting()),
            completed=len(done),
            limit=self._gate.limit,
            policy=self._queue.policy,
        )

    # --- Operations ---

    async def enqueue(self, file: FileRef, priority: int = DEFAULT_PRIORITY) -> TransferQueueItem:
        """Queue a download request and admit it right away if a slot is free."""
        async with self._lock:
            item = TransferQueueItem(
                id=next(self._ids),
                file=file,
                priority=priority,
                size=file.size,
                arrival_time=self._clock(),
            )
            self._queue.enqueue(item)
            logger.info(f"Queued transfer {item.id}: {file.name} (priority {priority})")
            self._publish("transfer_queued", item.dump())
            self._admit_waiting()
        await self._flush()
        return item

    async def complete(self, item_id: int) -> bool:
        """Finish a running transfer, free its slot and refill it."""
        async with self._lock:
            item = self._queue.get(item_id)
            if item is None or item.status != ItemStatus.RUNNING or item_id not in self._slots:
                logger.warning(f"Ignoring completion of transfer {item_id}: not running")
                return False
            self._queue.complete(item_id, self._clock())
            self._history.append(item)
            self._stop_tasks(item_id)
            self._release_slot(item_id)
            logger.info(f"Transfer {item_id} completed: {item.file.name}")
            self._publish("transfer_completed", item.dump())
            self._admit_waiting()
        await self._flush()
        return True

    async def cancel(
        self, item_id: int, reason: CancelReason = CancelReason.CANCELLED_BY_PEER
    ) -> bool:
        """Remove an item in any state; a running item gives back exactly one slot."""
        async with self._lock:
            cancelled = self._cancel(item_id, reason)
            if cancelled:
                self._admit_waiting()
        await self._flush()
        return cancelled

    async def cancel_owner(self, peer_id: str) -> int:
        """Drop every download sourced from a peer that went away."""
        return await self._cancel_where(
            lambda item: item.file.owner_peer_id == peer_id, CancelReason.SOURCE_GONE
        )

    async def reconcile(self, available_file_ids) -> int:
        """Drop downloads whose file is no longer in the visible catalog."""
        available = set(available_file_ids)
        return await self._cancel_where(
            lambda item: item.file.file_id not in available, CancelReason.SOURCE_GONE
        )

    async def move(self, item_id: int, target_item_id: int) -> bool:
        """Manual reorder of a waiting item onto another item's position."""
        async with self._lock:
            moved = self._queue.move(item_id, target_item_id)
            if moved:
                self._publish("queue_updated", self._queue_state())
        await self._flush()
        return moved

    async def set_policy(self, policy: SchedulingPolicy) -> None:
        async with self._lock:
            self._queue.policy = SchedulingPolicy(policy)
            self._queue.order()
            logger.info(f"Scheduling policy set to {self._queue.policy.value}")
            self._publish("queue_updated", self._queue_state())
        await self._flush()

    async def set_limit(self, limit: int) -> None:
        """Change concurrency; running transfers are never preempted."""
        async with self._lock:
            self._gate.limit = limit
            logger.info(f"Concurrent transfer limit set to {limit}")
            self._publish("queue_updated", self._queue_state())
            self._admit_waiting()
        await self._flush()

    async def stop(self) -> None:
        """
        Cancel watchdogs and in-flight runners, then cancel the running items
        so their slots go back to the gate. Waiting items stay queued and are
        not admitted.
        """
        tasks = [*self._watchdogs.values(), *self._runners.values()]
        self._watchdogs.clear()
        self._runners.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        async with self._lock:
            for item_id in list(self._slots):
                self._cancel(item_id, CancelReason.CANCELLED_BY_PEER)
        await self._flush()

    # --- Internals (caller holds the lock) ---

    def _admit_waiting(self) -> None:
        while True:
            item = self._queue.next()
            if item is None or not self._gate.try_acquire():
                return
            self._start_transfer(item)

    def _start_transfer(self, item: TransferQueueItem) -> None:
        # Only reached after a successful try_acquire.
        self._queue.start(item.id, self._clock())
        self._slots.add(item.id)
        if self._transfer_timeout is not None:
            self._watchdogs[item.id] = asyncio.create_task(self._watchdog(item.id))
        if self._launcher is not None:
            self._runners[item.id] = asyncio.create_task(self._run(item))
        logger.info(f"Transfer {item.id} started: {item.file.name}")
        self._publish("transfer_started", item.dump())

    def _release_slot(self, item_id: int) -> None:
        if item_id in self._slots:
            self._slots.discard(item_id)
            self._gate.release()

    def _cancel(self, item_id: int, reason: CancelReason) -> bool:
        item = self._queue.remove(item_id)
        if item is None:
            item = next((i for i in self._history if i.id == item_id), None)
            if item is None:
                return False
            self._history.remove(item)
        self._stop_tasks(item_id)
        self._release_slot(item_id)
        logger.info(f"Transfer {item_id} cancelled ({reason.value}): {item.file.name}")
        self._publish("transfer_cancelled", {**item.dump(), "reason": reason.value})
        return True

    async def _cancel_where(self, predicate, reason: CancelReason) -> int:
        async with self._lock:
            doomed = [item.id for item in self._queue if predicate(item)]
            for item_id in doomed:
                self._cancel(item_id, reason)
            if doomed:
                self._admit_waiting()
        await self._flush()
        return len(doomed)

    def _stop_tasks(self, item_id: int) -> None:
        current = asyncio.current_task()
        for tasks in (self._watchdogs, self._runners):
            task = tasks.pop(item_id, None)
            if task is not None and task is not current and not task.done():
                task.cancel()

    def _queue_state(self) -> dict:
        return {
            "policy": self._queue.policy.value,
            "limit": self._gate.limit,
            "items": [i.dump() for i in self._queue.order()],
        }

    # --- Background tasks ---

    async def _watchdog(self, item_id: int) -> None:
        await asyncio.sleep(self._transfer_timeout)
        logger.warning(f"Transfer {item_id} timed out after {self._transfer_timeout}s")
        await self.cancel(item_id, reason=CancelReason.TRANSFER_TIMEOUT)

    async def _run(self, item: TransferQueueItem) -> None:
        try:
            await self._launcher(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Transfer {item.id} ({item.file.name}) failed: {e}")
            await self.cancel(item.id, reason=CancelReason.FAILED)
        else:
            await self.complete(item.id)
