import pytest

from transfer.gate import AdmissionGate


def test_acquire_never_exceeds_limit():
    gate = AdmissionGate(2)

    assert gate.try_acquire()
    assert gate.try_acquire()
    assert not gate.try_acquire()
    assert gate.in_use == 2
    assert gate.available == 0
    assert gate.utilization() == 1.0


def test_release_on_idle_gate_is_refused():
    gate = AdmissionGate(1)
    assert not gate.release()

    gate.try_acquire()
    assert gate.release()
    assert not gate.release()
    assert gate.in_use == 0


def test_lowering_the_limit_keeps_running_slots():
    gate = AdmissionGate(3)
    for _ in range(3):
        gate.try_acquire()

    gate.limit = 1
    assert gate.in_use == 3
    assert gate.available == 0
    assert not gate.try_acquire()

    gate.release()
    gate.release()
    assert not gate.try_acquire()
    gate.release()
    assert gate.try_acquire()


def test_zero_limit_holds_everything_back():
    gate = AdmissionGate(0)
    assert not gate.try_acquire()
    assert gate.utilization() == 0.0


@pytest.mark.parametrize("limit", [-1, 1.5, "3", True])
def test_invalid_limits_are_rejected(limit):
    with pytest.raises(ValueError):
        AdmissionGate(limit)
