"""Bridge configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from pyenvi.const import DEFAULT_BASE_URL, DEFAULT_POLL_MINUTES, POLL_MINUTES_MAX, POLL_MINUTES_MIN
from pyenvi.exceptions import ValidationError


_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class BridgeConfig:
    """User-facing settings of one bridge instance.

    Attributes:
        username: Envi account email.
        password: Envi account password.
        poll_minutes: Normal refresh interval in minutes (1-60).
        debug_logging: Log at DEBUG level when True, INFO otherwise.
        verbose_auth: Log login response bodies at DEBUG level.
        remove_orphans: Delete child devices no longer reported by the API.
        device_id_override: Fixed device instance ID instead of the generated one.
        base_url: Base URL for the API.
    """

    username: str
    password: str
    poll_minutes: int = DEFAULT_POLL_MINUTES
    debug_logging: bool = True
    verbose_auth: bool = False
    remove_orphans: bool = False
    device_id_override: str | None = None
    base_url: str = DEFAULT_BASE_URL

    def __post_init__(self) -> None:
        """Validate the poll interval.

        Raises:
            ValidationError: If poll_minutes is outside 1-60.
        """
        if not POLL_MINUTES_MIN <= self.poll_minutes <= POLL_MINUTES_MAX:
            msg = f"Poll interval must be between {POLL_MINUTES_MIN} and {POLL_MINUTES_MAX} minutes"
            raise ValidationError(msg, parameter_name="poll_minutes", value=self.poll_minutes)

    @classmethod
    def from_env(cls, prefix: str = "ENVI_") -> BridgeConfig:
        """Build a configuration from environment variables.

        Reads ``<prefix>USERNAME``, ``<prefix>PASSWORD``, ``<prefix>POLL_MINUTES``,
        ``<prefix>DEBUG_LOGGING``, ``<prefix>VERBOSE_AUTH``, ``<prefix>REMOVE_ORPHANS``,
        ``<prefix>DEVICE_ID`` and ``<prefix>API_BASE_URL``.

        Raises:
            ValidationError: If credentials are missing or a value is invalid.
        """
        username = os.getenv(f"{prefix}USERNAME")
        password = os.getenv(f"{prefix}PASSWORD")
        if not username or not password:
            msg = f"Missing {prefix}USERNAME or {prefix}PASSWORD"
            raise ValidationError(msg, parameter_name="credentials")

        poll_minutes = os.getenv(f"{prefix}POLL_MINUTES")
        try:
            poll = int(poll_minutes) if poll_minutes else DEFAULT_POLL_MINUTES
        except ValueError as exc:
            msg = f"Invalid {prefix}POLL_MINUTES: {poll_minutes}"
            raise ValidationError(msg, parameter_name="poll_minutes", value=poll_minutes) from exc

        return cls(
            username=username,
            password=password,
            poll_minutes=poll,
            debug_logging=_env_bool(os.getenv(f"{prefix}DEBUG_LOGGING"), default=True),
            verbose_auth=_env_bool(os.getenv(f"{prefix}VERBOSE_AUTH"), default=False),
            remove_orphans=_env_bool(os.getenv(f"{prefix}REMOVE_ORPHANS"), default=False),
            device_id_override=os.getenv(f"{prefix}DEVICE_ID") or None,
            base_url=os.getenv(f"{prefix}API_BASE_URL") or DEFAULT_BASE_URL,
        )


def configure_logging(config: BridgeConfig) -> None:
    """Apply the debug logging toggle to the library's loggers."""
    logging.getLogger("pyenvi").setLevel(logging.DEBUG if config.debug_logging else logging.INFO)
