"""Custom exceptions for pyenvi library."""

from __future__ import annotations

from typing import Any


class EnviError(Exception):
    """Base exception for all Envi errors."""


class AuthError(EnviError):
    """Exception raised for authentication failures.

    Covers bad credentials and missing or malformed tokens. Always recoverable:
    the next API call attempts to authenticate again.
    """


class TransientApiError(EnviError):
    """Exception raised for failed API calls that may succeed later.

    Attributes:
        status: Optional HTTP status code of the failed response.
    """

    def __init__(self, message: str = "", status: int | None = None) -> None:
        """Initialize TransientApiError.

        Args:
            message: Error message.
            status: Optional HTTP status code of the failed response.
        """
        super().__init__(message)
        self.status = status


class EnviConnectionError(TransientApiError):
    """Exception raised for connection failures."""


class EnviTimeoutError(TransientApiError):
    """Exception raised when API requests timeout."""


class AuthExpiredError(TransientApiError):
    """Exception raised when a request is still rejected with 401/403 after reauthentication."""


class ValidationError(EnviError):
    """Exception raised for command input that is rejected locally.

    Attributes:
        parameter_name: Optional name of the invalid parameter.
        value: Optional value that was invalid.
    """

    def __init__(
        self,
        message: str = "",
        parameter_name: str | None = None,
        value: Any = None,
    ) -> None:
        """Initialize ValidationError.

        Args:
            message: Error message.
            parameter_name: Optional name of the invalid parameter.
            value: Optional value that was invalid.
        """
        super().__init__(message)
        self.parameter_name = parameter_name
        self.value = value


class ChildDeviceError(EnviError):
    """Exception raised when the host fails to list, create or delete a child device.

    Attributes:
        device_id: Optional local device ID associated with the error.
    """

    def __init__(self, message: str = "", device_id: str | None = None) -> None:
        """Initialize ChildDeviceError.

        Args:
            message: Error message.
            device_id: Optional local device ID associated with the error.
        """
        super().__init__(message)
        self.device_id = device_id
