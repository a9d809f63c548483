from __future__ import annotations


class BridgeError(Exception):
    """Base class for failures raised inside the bridge."""


class TransportError(BridgeError):
    """The relay connection could not be opened or dropped unexpectedly."""


class ProtocolError(BridgeError):
    """An inbound envelope or payload could not be understood."""


class IntentRejected(BridgeError, ValueError):
    """A local intent failed validation before anything was sent."""


class GenerationError(BridgeError):
    """The host text generator failed to produce a reply."""
