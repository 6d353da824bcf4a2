"""
Pool Monitor Exceptions - Custom exception hierarchy.

Errors raised at call sites (configuration, watch preconditions, checkpoint
restore) are fatal to the caller. Errors raised inside a polling cycle are
caught at the cycle boundary and published through the ``exception`` signal.
"""

from datetime import datetime
from typing import Any, Optional


class PoolMonitorError(Exception):
    """Base exception for all pool monitor errors."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class ConfigurationError(PoolMonitorError):
    """Invalid monitor configuration."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data


class UnknownNetwork(ConfigurationError):
    """Network name is not one of the known networks."""

    def __init__(self, network: Optional[str]) -> None:
        super().__init__(f"Unknown network {network}", config_key="network")
        self.network = network


class MissingCustomURI(ConfigurationError):
    """Custom network without an explicit api/monitor base URI."""

    def __init__(self, config_key: str) -> None:
        service = "Ethplorer API" if config_key == "api" else "Bulk API"
        super().__init__(
            f"Custom network requires {service} uri to be set in options",
            config_key=config_key,
        )


class MissingApiKey(ConfigurationError):
    """No API key was provided."""

    def __init__(self) -> None:
        super().__init__("No API Key specified", config_key="api_key")


class NoPoolConfigured(PoolMonitorError):
    """Operation requires a pool identifier but none is set."""

    def __init__(self) -> None:
        super().__init__(
            "No poolId specified: set pool_id option or create a new pool using create_pool method"
        )


class AlreadyWatching(PoolMonitorError):
    """watch() called while the scheduler is already watching."""

    def __init__(self) -> None:
        super().__init__("Watching is already started, use unwatch first")


class InvalidCheckpoint(PoolMonitorError):
    """Checkpoint blob supplied to restore() is malformed."""

    def __init__(
        self,
        message: str = "Invalid state object",
        blob: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.blob = blob


class UnknownApiMethod(PoolMonitorError):
    """Remote method name is not one the client knows how to call."""

    def __init__(self, method: str) -> None:
        super().__init__(f"Unknown API method {method}")
        self.method = method


class TransportError(PoolMonitorError):
    """HTTP-level failure talking to the Ethplorer API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        error_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
            "error_code": self.error_code,
        })
        return data


class FetchError(PoolMonitorError):
    """Retrieving pool updates failed."""

    def __init__(
        self,
        message: str,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, original_error, context)
        self.request_url = request_url

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["request_url"] = self.request_url
        return data

    def __str__(self) -> str:
        text = super().__str__()
        if self.request_url:
            text = f"{text} ({self.request_url})"
        return text


class TokenResolutionDegraded(PoolMonitorError):
    """Token metadata could not be loaded; a cached or sentinel value is used."""

    def __init__(
        self,
        message: str,
        token_address: str,
        attempts: int = 0,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.token_address = token_address
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "token_address": self.token_address,
            "attempts": self.attempts,
        })
        return data
