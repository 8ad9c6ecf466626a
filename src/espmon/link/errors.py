from __future__ import annotations


class LinkError(Exception):
    """Base class for device link failures."""


class TransportError(LinkError):
    """A concrete transport failed to open, read or write."""


class NotConnectedError(LinkError):
    """A command was issued while no connection is active."""


class CommandError(LinkError):
    """Writing a command to the device failed."""
