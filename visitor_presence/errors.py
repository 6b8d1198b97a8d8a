"""Exceptions raised inside the presence engine."""


class VisitorPresenceError(Exception):
    """Base class for visitor presence errors."""
    pass


class ConfigurationError(VisitorPresenceError):
    """Required configuration is missing or invalid (fatal at startup)."""
    pass


class StoreUnavailableError(VisitorPresenceError):
    """The backing key/value store could not serve a command."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
