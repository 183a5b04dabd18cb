"""
Custom exceptions for the log shipper.

Provides structured error handling with machine-readable error codes
and error details for reporting hooks.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .transport import DeliveryResult


class LogShipException(Exception):
    """Base exception for the log shipper."""

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class ConfigError(LogShipException):
    """Raised when the shipper configuration is invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            error_code="config_error",
            details=details,
        )


class CapacityError(LogShipException):
    """Raised when the live buffer is full and the overflow policy rejects."""

    def __init__(
        self,
        message: str = "Buffer capacity exceeded",
        capacity: Optional[int] = None,
    ) -> None:
        details = {}
        if capacity is not None:
            details["capacity"] = capacity

        super().__init__(
            message=message,
            error_code="capacity_exceeded",
            details=details,
        )


class FormatError(LogShipException):
    """Raised when a formatter fails to render a single record."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            error_code="format_error",
            details=details,
        )


class TransportError(LogShipException):
    """Raised when a push request fails."""

    retryable = False

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error_code: str = "transport_error",
    ) -> None:
        details = {}
        if status is not None:
            details["status"] = status

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
        )
        self.status = status


class RetryableTransportError(TransportError):
    """Transient failure: 5xx, 408, 429, network errors and timeouts."""

    retryable = True

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, status=status, error_code="transport_retryable")


class PermanentTransportError(TransportError):
    """Non-retryable failure, typically a 4xx rejection."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, status=status, error_code="transport_permanent")


class DeliveryError(LogShipException):
    """Raised by flush/shutdown when a generation could not be delivered."""

    def __init__(self, message: str, result: "DeliveryResult") -> None:
        super().__init__(
            message=message,
            error_code="delivery_failed",
            details={
                "generation": result.generation,
                "attempts": result.attempts,
                "status": result.status,
                "entries": result.entries,
            },
        )
        self.result = result


class FlushTimeout(LogShipException):
    """Raised when outstanding deliveries do not resolve within the grace period."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            message=f"Delivery did not complete within {timeout_seconds}s",
            error_code="flush_timeout",
            details={"timeout_seconds": timeout_seconds},
        )


class ShipperStateError(LogShipException):
    """Raised when the shipper is used outside its start/shutdown lifecycle."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message=message,
            error_code="invalid_state",
        )
