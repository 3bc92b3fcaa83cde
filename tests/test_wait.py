"""Tests for readiness polling with backoff."""

import pytest

from static_egress import ProvisioningError, WaitTimeoutError, wait_for


class FakeClock:
    """Clock whose time only moves when sleep is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_returns_first_truthy_result():
    clock = FakeClock()
    results = iter([None, "", "10.224.1.4/31"])

    value = wait_for(lambda: next(results), "prefix", timeout=300, sleep=clock.sleep, clock=clock)

    assert value == "10.224.1.4/31"
    assert clock.sleeps == [5.0, 10.0]


def test_ready_immediately_never_sleeps():
    clock = FakeClock()

    assert wait_for(lambda: True, "cluster", sleep=clock.sleep, clock=clock) is True
    assert clock.sleeps == []


def test_backoff_is_capped():
    clock = FakeClock()

    with pytest.raises(WaitTimeoutError):
        wait_for(lambda: False, "pods", timeout=100, max_delay=20, sleep=clock.sleep, clock=clock)

    assert clock.sleeps[:4] == [5.0, 10.0, 20.0, 20.0]
    assert max(clock.sleeps) == 20.0


def test_timeout_lands_on_deadline():
    """Test the last sleep is shortened to the deadline before giving up."""
    clock = FakeClock()

    with pytest.raises(WaitTimeoutError, match="Timed out after 30s waiting for node pool"):
        wait_for(lambda: False, "node pool", timeout=30, sleep=clock.sleep, clock=clock)

    assert clock.sleeps == [5.0, 10.0, 15.0]
    assert clock.now == 30.0


def test_timeout_is_a_provisioning_error():
    assert issubclass(WaitTimeoutError, ProvisioningError)


def test_check_errors_propagate():
    clock = FakeClock()

    def failed():
        raise ProvisioningError("AKS cluster provisioning ended in state Failed")

    with pytest.raises(ProvisioningError, match="state Failed"):
        wait_for(failed, "cluster", sleep=clock.sleep, clock=clock)
    assert clock.sleeps == []
