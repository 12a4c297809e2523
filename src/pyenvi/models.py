"""Data models for the Envi bridge."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyenvi.const import DEFAULT_POLL_MINUTES, LATENCY_WINDOW


__all__ = [
    "HealthState",
    "LocalDeviceState",
    "RemoteDeviceRecord",
    "Session",
]


def _to_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Session:
    """Authenticated bearer-token context.

    Attributes:
        token: Opaque bearer token returned by the login endpoint.
        issued_at: When the token was obtained.
        expires_at_ms: Token expiry in milliseconds since epoch, if the JWT carries one.
        device_instance_id: Stable identifier of this polling client.
    """

    token: str
    issued_at: datetime
    expires_at_ms: int | None
    device_instance_id: str

    @property
    def expires_at(self) -> datetime | None:
        """Get token expiry as a datetime."""
        if self.expires_at_ms is None:
            return None
        return datetime.fromtimestamp(self.expires_at_ms / 1000, tz=UTC)

    @property
    def age_seconds(self) -> float:
        """Get seconds elapsed since the token was issued."""
        return (datetime.now(UTC) - self.issued_at).total_seconds()

    def minutes_until_expiry(self) -> int | None:
        """Get whole minutes until expiry, truncated toward zero.

        Returns:
            Remaining minutes, or None when the expiry is unknown.
        """
        if self.expires_at_ms is None:
            return None
        now_ms = datetime.now(UTC).timestamp() * 1000
        return int((self.expires_at_ms - now_ms) / 60000)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the state store."""
        return {
            "token": self.token,
            "issued_at": _to_timestamp(self.issued_at),
            "expires_at_ms": self.expires_at_ms,
            "device_instance_id": self.device_instance_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Deserialize from the state store."""
        return cls(
            token=data["token"],
            issued_at=_from_timestamp(data.get("issued_at")) or datetime.now(UTC),
            expires_at_ms=data.get("expires_at_ms"),
            device_instance_id=data.get("device_instance_id", ""),
        )


@dataclass
class RemoteDeviceRecord:
    """Heater state as reported by the device list or single device endpoint.

    Attributes:
        id: Remote device identifier.
        name: User-assigned heater name (may be empty).
        ambient_temperature: Measured room temperature.
        target_temperature: Current heating setpoint.
        power_on: Whether the heater is switched on.
        available: Whether the cloud reports the heater as reachable.
        raw: Original API record for debugging.
    """

    id: str
    name: str
    ambient_temperature: float | None
    target_temperature: float | None
    power_on: bool
    available: bool
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def thermostat_mode(self) -> str:
        """Get thermostat mode (heat or off)."""
        return "heat" if self.power_on else "off"

    @property
    def operating_state(self) -> str:
        """Get operating state (heating or idle)."""
        return "heating" if self.power_on else "idle"


@dataclass
class LocalDeviceState:
    """Locally mirrored state of one discovered heater.

    Attributes:
        device_id: Remote device identifier.
        local_id: Identifier of the child entity on the host.
        label: Display name of the child entity.
        last_known_attributes: Last value sent to the host per attribute.
    """

    device_id: str
    local_id: str
    label: str = ""
    last_known_attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthState:
    """API health counters and polling schedule state.

    Attributes:
        consecutive_failures: Failures since the last success.
        circuit_open: Whether polling is suspended by the circuit breaker.
        latency_samples: Most recent latencies in ms, oldest first.
        average_latency_ms: Integer-truncated mean of latency_samples.
        last_success_time: Time of the last successful API call.
        last_refresh_time: Time the last batch refresh started.
        current_poll_interval_minutes: Active polling interval.
        normal_poll_interval_minutes: Configured polling interval when idle.
    """

    consecutive_failures: int = 0
    circuit_open: bool = False
    latency_samples: deque[int] = field(default_factory=lambda: deque(maxlen=LATENCY_WINDOW))
    average_latency_ms: int | None = None
    last_success_time: datetime | None = None
    last_refresh_time: datetime | None = None
    current_poll_interval_minutes: int | None = None
    normal_poll_interval_minutes: int = DEFAULT_POLL_MINUTES

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the state store."""
        return {
            "consecutive_failures": self.consecutive_failures,
            "circuit_open": self.circuit_open,
            "latency_samples": list(self.latency_samples),
            "average_latency_ms": self.average_latency_ms,
            "last_success_time": _to_timestamp(self.last_success_time),
            "last_refresh_time": _to_timestamp(self.last_refresh_time),
            "current_poll_interval_minutes": self.current_poll_interval_minutes,
            "normal_poll_interval_minutes": self.normal_poll_interval_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthState:
        """Deserialize from the state store."""
        return cls(
            consecutive_failures=data.get("consecutive_failures", 0),
            circuit_open=data.get("circuit_open", False),
            latency_samples=deque(data.get("latency_samples", []), maxlen=LATENCY_WINDOW),
            average_latency_ms=data.get("average_latency_ms"),
            last_success_time=_from_timestamp(data.get("last_success_time")),
            last_refresh_time=_from_timestamp(data.get("last_refresh_time")),
            current_poll_interval_minutes=data.get("current_poll_interval_minutes"),
            normal_poll_interval_minutes=data.get("normal_poll_interval_minutes", DEFAULT_POLL_MINUTES),
        )
