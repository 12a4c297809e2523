"""Tests for the health monitor and circuit breaker."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from pyenvi.health import HealthMonitor
from pyenvi.storage import MemoryStateStore


if TYPE_CHECKING:
    from conftest import RecordingScheduler


@pytest.fixture
def callbacks() -> MagicMock:
    """Create the circuit callbacks."""
    mock = MagicMock()
    mock.reauthenticate = AsyncMock(return_value=True)
    mock.refresh = AsyncMock()
    return mock


@pytest.fixture
def monitor(scheduler: RecordingScheduler, callbacks: MagicMock) -> HealthMonitor:
    """Create a health monitor wired to mock callbacks."""
    return HealthMonitor(
        scheduler,
        on_circuit_open=callbacks.on_open,
        on_circuit_close=callbacks.on_close,
        reauthenticate=callbacks.reauthenticate,
        refresh=callbacks.refresh,
    )


class TestCircuitBreaker:
    """Test opening and closing the circuit."""

    def test_stays_closed_below_threshold(self, monitor: HealthMonitor, scheduler: RecordingScheduler) -> None:
        """Test four failures keep the circuit closed."""
        for _ in range(4):
            monitor.record_failure()

        assert monitor.circuit_open is False
        assert monitor.consecutive_failures == 4
        assert "circuit_reset" not in scheduler.jobs

    def test_opens_at_threshold(
        self,
        monitor: HealthMonitor,
        scheduler: RecordingScheduler,
        callbacks: MagicMock,
    ) -> None:
        """Test the fifth failure opens the circuit and schedules a reset."""
        for _ in range(5):
            monitor.record_failure()

        assert monitor.circuit_open is True
        callbacks.on_open.assert_called_once()
        assert scheduler.jobs["circuit_reset"].delay_seconds == 30 * 60

    def test_further_failures_do_not_reopen(self, monitor: HealthMonitor, callbacks: MagicMock) -> None:
        """Test failures while open do not fire the open callback again."""
        for _ in range(7):
            monitor.record_failure()

        callbacks.on_open.assert_called_once()
        assert monitor.consecutive_failures == 7

    def test_success_closes_circuit(
        self,
        monitor: HealthMonitor,
        scheduler: RecordingScheduler,
        callbacks: MagicMock,
    ) -> None:
        """Test a success closes the circuit and resumes polling."""
        for _ in range(5):
            monitor.record_failure()

        monitor.record_success(120)

        assert monitor.circuit_open is False
        assert monitor.consecutive_failures == 0
        assert "circuit_reset" not in scheduler.jobs
        callbacks.on_close.assert_called_once()

    def test_success_while_closed(self, monitor: HealthMonitor, callbacks: MagicMock) -> None:
        """Test a success while closed only resets the failure count."""
        monitor.record_failure()
        monitor.record_success(80)

        assert monitor.consecutive_failures == 0
        callbacks.on_close.assert_not_called()

    def test_reset(self, monitor: HealthMonitor, scheduler: RecordingScheduler, callbacks: MagicMock) -> None:
        """Test a manual reset closes the circuit without resuming polling."""
        for _ in range(5):
            monitor.record_failure()

        monitor.reset()

        assert monitor.circuit_open is False
        assert monitor.consecutive_failures == 0
        assert "circuit_reset" not in scheduler.jobs
        callbacks.on_close.assert_not_called()


class TestLatency:
    """Test the rolling latency window."""

    def test_average_of_last_ten(self, monitor: HealthMonitor) -> None:
        """Test only the ten most recent samples are averaged."""
        for latency in range(1, 13):
            monitor.record_success(latency * 10)

        assert list(monitor.state.latency_samples) == [30, 40, 50, 60, 70, 80, 90, 100, 110, 120]
        assert monitor.average_latency_ms == 75

    def test_average_is_truncated(self, monitor: HealthMonitor) -> None:
        """Test the average is an integer-truncated mean."""
        monitor.record_success(100)
        monitor.record_success(101)

        assert monitor.average_latency_ms == 100


class TestAttemptReset:
    """Test the cooldown reset attempt."""

    async def test_login_failure_reschedules(
        self,
        monitor: HealthMonitor,
        scheduler: RecordingScheduler,
        callbacks: MagicMock,
    ) -> None:
        """Test a failed login schedules another attempt without refreshing."""
        for _ in range(5):
            monitor.record_failure()
        callbacks.reauthenticate.return_value = False

        assert await scheduler.fire("circuit_reset") is False

        callbacks.refresh.assert_not_awaited()
        assert monitor.circuit_open is True
        assert scheduler.jobs["circuit_reset"].delay_seconds == 30 * 60

    async def test_successful_refresh_closes(
        self,
        monitor: HealthMonitor,
        scheduler: RecordingScheduler,
        callbacks: MagicMock,
    ) -> None:
        """Test a successful refresh after login closes the circuit."""
        for _ in range(5):
            monitor.record_failure()
        callbacks.refresh.side_effect = lambda: monitor.record_success(50)

        assert await scheduler.fire("circuit_reset") is True

        assert monitor.circuit_open is False
        assert "circuit_reset" not in scheduler.jobs
        callbacks.on_close.assert_called_once()

    async def test_failed_refresh_reschedules(
        self,
        monitor: HealthMonitor,
        scheduler: RecordingScheduler,
        callbacks: MagicMock,
    ) -> None:
        """Test the circuit stays open with a new attempt pending when the refresh fails."""
        for _ in range(5):
            monitor.record_failure()
        callbacks.refresh.side_effect = monitor.record_failure

        await scheduler.fire("circuit_reset")

        callbacks.reauthenticate.assert_awaited_once()
        assert monitor.circuit_open is True
        assert "circuit_reset" in scheduler.jobs


class TestPersistence:
    """Test HealthState persistence."""

    def test_state_saved_and_restored(self, scheduler: RecordingScheduler) -> None:
        """Test a new monitor picks up the persisted state."""
        store = MemoryStateStore()
        monitor = HealthMonitor(scheduler, store=store)
        monitor.record_success(40)
        monitor.record_failure()
        monitor.record_failure()

        restored = HealthMonitor(scheduler, store=store)

        assert restored.consecutive_failures == 2
        assert restored.average_latency_ms == 40
        assert restored.state.last_success_time == monitor.state.last_success_time
