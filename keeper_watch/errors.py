"""Exception hierarchy shared by the keeper watch services."""

from __future__ import annotations

from typing import Optional


class KeeperWatchError(RuntimeError):
    """Base class for keeper watch failures."""


class ConfigError(KeeperWatchError):
    """Raised when required settings are missing or invalid."""


class ChainReadError(KeeperWatchError):
    """Raised when a read against the chain client fails.

    ``stage`` names the read that failed (``height``, ``leader``, ``workable``,
    ``logs``, ...) so callers can label metrics and log lines consistently.
    """

    def __init__(self, message: str, *, stage: str = "unknown") -> None:
        super().__init__(message)
        self.stage = stage


class AlertDeliveryError(KeeperWatchError):
    """Raised when an alert could not be delivered to its endpoint."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BootstrapError(KeeperWatchError):
    """Raised when the job state store could not be seeded."""


__all__ = [
    "AlertDeliveryError",
    "BootstrapError",
    "ChainReadError",
    "ConfigError",
    "KeeperWatchError",
]
