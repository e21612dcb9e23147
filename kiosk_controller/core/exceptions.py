"""
Custom exceptions for the kiosk controller.

Provides a hierarchy of typed exceptions for better error handling
and more informative error messages.
"""

from typing import Any, Optional


class KioskError(Exception):
    """Base exception for all kiosk controller errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Optional error code for programmatic handling.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Device Errors
# =============================================================================


class DeviceError(KioskError):
    """Base exception for serial device errors."""

    def __init__(
        self,
        message: str,
        device_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.device_name = device_name
        if device_name:
            self.details["device"] = device_name


class DeviceConnectionError(DeviceError):
    """Open, read or write failure on the serial link."""

    pass


class DeviceNotFoundError(DeviceError):
    """No device matching the allow-list is attached."""

    pass


class DevicePermissionRequired(DeviceError):
    """
    No previously authorized device is attached.

    Not a failure: the operator has to authorize a device explicitly.
    """

    pass


# =============================================================================
# Ledger Errors
# =============================================================================


class LedgerError(KioskError):
    """Base exception for ledger access errors."""

    pass


class ChainQueryError(LedgerError):
    """Ledger fetch failed (transport, HTTP or JSON-RPC error)."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.method = method
        if method:
            self.details["method"] = method


class MalformedTransactionError(LedgerError):
    """A transaction record failed schema validation."""

    pass


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(KioskError):
    """Base exception for session errors."""

    pass


class InvalidTransitionError(SessionError):
    """Requested transition is not valid from the current view."""

    def __init__(
        self,
        message: str,
        view: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        if view:
            self.details["view"] = view


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(KioskError):
    """A required external parameter is missing or invalid."""

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        if setting:
            self.details["setting"] = setting


# =============================================================================
# Repository Errors
# =============================================================================


class RepositoryError(KioskError):
    """Base exception for repository errors."""

    pass


class RedisConnectionError(RepositoryError):
    """Error connecting to Redis."""

    pass
