"""Pydantic models for download scheduling."""

from enum import Enum

from pydantic import Field

from wire import WireModel


class ItemStatus(str, Enum):
    """Transitions only move forward: waiting -> running -> completed."""
    WAITING = "waiting"
    RUNNING = "running"
    COMPLETED = "completed"


class SchedulingPolicy(str, Enum):
    FCFS = "FCFS"
    SJF = "SJF"
    PRIORITY = "Priority"


class CancelReason(str, Enum):
    CANCELLED_BY_PEER = "cancelled_by_peer"
    TRANSFER_TIMEOUT = "transfer_timeout"
    SOURCE_GONE = "source_gone"
    FAILED = "failed"


class FileRef(WireModel):
    """The catalog entry a download points at."""
    file_id: str
    name: str
    size: int = Field(ge=0)
    owner_peer_id: str
    room_id: str | None = None


class TransferQueueItem(WireModel):
    id: int
    file: FileRef
    priority: int
    size: int
    arrival_time: float
    start_time: float | None = None
    end_time: float | None = None
    status: ItemStatus = ItemStatus.WAITING

    @property
    def wait_time(self) -> float | None:
        if self.start_time is None:
            return None
        return self.start_time - self.arrival_time

    @property
    def turnaround_time(self) -> float | None:
        if self.end_time is None:
            return None
        return self.end_time - self.arrival_time


class SchedulerMetrics(WireModel):
    """Observability only; nothing in scheduling depends on these."""
    average_wait: float = 0.0
    average_turnaround: float = 0.0
    utilization: float = 0.0
    active: int = 0
    waiting: int = 0
    completed: int = 0
    limit: int = 0
    policy: SchedulingPolicy = SchedulingPolicy.FCFS
