"""
Error taxonomy for the outflow watcher.

Every failure the watcher can hit is raised as one of these types so the
polling loop can log it once and decide whether the cycle, a single
transaction, or the whole process is affected.
"""
from typing import Optional


class WatcherError(Exception):
    """Base class for all watcher errors."""


class TransientFetchError(WatcherError):
    """RPC read failed (HTTP error, timeout, JSON-RPC error). Never fatal."""

    def __init__(self, method: str, message: str, signature: Optional[str] = None):
        self.method = method
        self.signature = signature
        target = f" [{signature}]" if signature else ""
        super().__init__(f"{method}{target}: {message}")


class DecodeError(WatcherError):
    """A transaction form could not be decoded by a transfer strategy."""

    def __init__(self, strategy: str, message: str):
        self.strategy = strategy
        super().__init__(f"{strategy}: {message}")


class DeliveryError(WatcherError):
    """Alert delivery to a destination failed."""

    def __init__(self, destination: str, message: str):
        self.destination = destination
        super().__init__(f"{destination}: {message}")


class ConfigError(WatcherError):
    """Required configuration is missing or invalid. Fatal at startup."""


class PersistenceError(WatcherError):
    """Durable state could not be read or written."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"state {operation} failed: {message}")
