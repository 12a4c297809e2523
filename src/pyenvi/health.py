"""API health tracking and circuit breaker.

The circuit opens after consecutive failures and suspends polling. A reset
attempt fires after a fixed cooldown: it forces a login and, if that works,
runs a refresh whose success closes the circuit again. Failed reset attempts
reschedule themselves indefinitely.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pyenvi.const import CIRCUIT_COOLDOWN_MINUTES, FAILURE_THRESHOLD, JOB_CIRCUIT_RESET, STORE_HEALTH
from pyenvi.models import HealthState


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pyenvi.interfaces import Scheduler, StateStore

_LOGGER = logging.getLogger(__name__)


class HealthMonitor:
    """Track API latency and failures, and drive the circuit breaker.

    HealthState is mutated only here.

    Example:
        ```python
        health = HealthMonitor(
            scheduler,
            on_circuit_open=poller.cancel_polling,
            on_circuit_close=poller.schedule_polling,
            reauthenticate=lambda: tokens.ensure_valid(force=True),
            refresh=poller.refresh_all,
        )
        ```
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        state: HealthState | None = None,
        store: StateStore | None = None,
        failure_threshold: int = FAILURE_THRESHOLD,
        cooldown_minutes: int = CIRCUIT_COOLDOWN_MINUTES,
        on_circuit_open: Callable[[], None] | None = None,
        on_circuit_close: Callable[[], None] | None = None,
        reauthenticate: Callable[[], Awaitable[bool]] | None = None,
        refresh: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the health monitor.

        Args:
            scheduler: Scheduler for the cooldown reset job.
            state: Initial state. Defaults to the state persisted in ``store``,
                or a fresh HealthState.
            store: Optional state store persisting HealthState after every change.
            failure_threshold: Consecutive failures that open the circuit.
            cooldown_minutes: Minutes between reset attempts while the circuit is open.
            on_circuit_open: Called when the circuit opens (cancel polling).
            on_circuit_close: Called when the circuit closes (resume normal polling).
            reauthenticate: Forced login used by reset attempts.
            refresh: Refresh cycle run after a successful reset login.
        """
        self._scheduler = scheduler
        self._store = store
        self._failure_threshold = failure_threshold
        self._cooldown_minutes = cooldown_minutes
        self._on_circuit_open = on_circuit_open
        self._on_circuit_close = on_circuit_close
        self._reauthenticate = reauthenticate
        self._refresh = refresh

        if state is None and store is not None and store.get(STORE_HEALTH):
            state = HealthState.from_dict(store.get(STORE_HEALTH))
        self.state = state or HealthState()

    @property
    def circuit_open(self) -> bool:
        """Check whether the circuit is open."""
        return self.state.circuit_open

    @property
    def consecutive_failures(self) -> int:
        """Get failures since the last success."""
        return self.state.consecutive_failures

    @property
    def average_latency_ms(self) -> int | None:
        """Get the rolling average latency."""
        return self.state.average_latency_ms

    def record_success(self, latency_ms: int) -> None:
        """Record a successful API call.

        Args:
            latency_ms: Elapsed time of the call in milliseconds.
        """
        state = self.state
        state.consecutive_failures = 0
        state.last_success_time = datetime.now(UTC)
        state.latency_samples.append(latency_ms)
        state.average_latency_ms = int(sum(state.latency_samples) / len(state.latency_samples))

        if state.circuit_open:
            state.circuit_open = False
            self._scheduler.cancel(JOB_CIRCUIT_RESET)
            _LOGGER.info("Circuit breaker closed - resuming normal operation")
            self.save()
            if self._on_circuit_close is not None:
                self._on_circuit_close()
            return

        self.save()

    def record_failure(self) -> None:
        """Record a failed API call, opening the circuit at the threshold."""
        state = self.state
        state.consecutive_failures += 1
        _LOGGER.debug("API failure count: %d/%d", state.consecutive_failures, self._failure_threshold)

        if state.consecutive_failures >= self._failure_threshold and not state.circuit_open:
            state.circuit_open = True
            _LOGGER.warning(
                "Circuit breaker opened after %d failures - pausing polling for %d minutes",
                state.consecutive_failures,
                self._cooldown_minutes,
            )
            if self._on_circuit_open is not None:
                self._on_circuit_open()
            self._schedule_reset()

        self.save()

    async def attempt_reset(self) -> bool:
        """Try to leave the open state after the cooldown (scheduled callback).

        Returns:
            True if the forced login succeeded and a refresh was run.
        """
        _LOGGER.info("Circuit breaker cooldown expired - attempting to resume")
        authenticated = await self._reauthenticate() if self._reauthenticate is not None else False
        if not authenticated:
            _LOGGER.warning("Circuit reset login failed, retrying in %d minutes", self._cooldown_minutes)
            self._schedule_reset()
            return False

        if self._refresh is not None:
            await self._refresh()

        # A failed refresh leaves the circuit open with no reset pending
        if self.state.circuit_open:
            _LOGGER.warning("Circuit still open after reset refresh, retrying in %d minutes", self._cooldown_minutes)
            self._schedule_reset()
        return True

    def set_poll_interval(self, current_minutes: int, normal_minutes: int | None = None) -> None:
        """Record the active polling interval, and optionally the configured one."""
        self.state.current_poll_interval_minutes = current_minutes
        if normal_minutes is not None:
            self.state.normal_poll_interval_minutes = normal_minutes
        self.save()

    def mark_refresh(self) -> None:
        """Record the start of a batch refresh."""
        self.state.last_refresh_time = datetime.now(UTC)

    def reset(self) -> None:
        """Close the circuit and clear failure counters without resuming polling."""
        self.state.consecutive_failures = 0
        self.state.circuit_open = False
        self._scheduler.cancel(JOB_CIRCUIT_RESET)
        _LOGGER.debug("Health state reset")
        self.save()

    def save(self) -> None:
        """Persist HealthState to the store, if any."""
        if self._store is not None:
            self._store.set(STORE_HEALTH, self.state.to_dict())

    def _schedule_reset(self) -> None:
        self._scheduler.schedule_once(JOB_CIRCUIT_RESET, self._cooldown_minutes * 60, self.attempt_reset)
