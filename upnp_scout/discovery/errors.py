"""
Exceptions raised by the discovery service.

Malformed datagrams and inadmissible messages are never errors; only
call-order mistakes and socket failures are.
"""


class DiscoveryError(Exception):
    """Base class for discovery errors."""


class DiscoveryUsageError(DiscoveryError):
    """A discovery service method was called in the wrong state."""


class ServiceNotStartedError(DiscoveryUsageError):
    """The operation requires a listening service."""

    def __init__(self, message: str = "Discovery service not started"):
        super().__init__(message)


class ServiceAlreadyStartedError(DiscoveryUsageError):
    """start() was called on a service that already left the unstarted state."""

    def __init__(self, state: str):
        super().__init__(f"Discovery service already started (state={state})")
        self.state = state


class DiscoveryTransportError(DiscoveryError):
    """A socket bind, send or receive failed."""
