import pytest

from coordinator.service import CoordinatorService


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingOutbox:
    """Outbox that records deliveries to connected peers."""

    def __init__(self) -> None:
        self.connected: set[str] = set()
        self.messages: list[tuple[str, str, object]] = []

    def send(self, peer_id, event, data) -> bool:
        if peer_id not in self.connected:
            return False
        self.messages.append((peer_id, getattr(event, "value", event), data))
        return True

    def events(self, peer_id: str, event: str | None = None) -> list:
        return [
            (name, data) for pid, name, data in self.messages
            if pid == peer_id and (event is None or name == event)
        ]

    def data(self, peer_id: str, event: str) -> list:
        return [data for _, data in self.events(peer_id, event)]

    def last(self, peer_id: str, event: str):
        found = self.data(peer_id, event)
        assert found, f"{peer_id} never received {event}"
        return found[-1]

    def clear(self) -> None:
        self.messages.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def outbox():
    return RecordingOutbox()


@pytest.fixture
def coordinator(outbox, clock):
    return CoordinatorService(outbox=outbox, clock=clock)


@pytest.fixture
def connect(coordinator, outbox):
    """Connect peers by id and return them."""
    async def _connect(*peer_ids):
        for peer_id in peer_ids:
            outbox.connected.add(peer_id)
            await coordinator.connect(peer_id)
        return peer_ids
    return _connect
