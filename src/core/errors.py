"""Error types shared by the core and its adapters.

Adapters translate library exceptions into these types at the boundary so
the dispatcher only has to reason about the bridge's own failure modes.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every failure the core knows how to degrade."""


class StorageError(BridgeError):
    """The correlation store could not read or write."""


class TransientNetworkError(BridgeError):
    """A remote call to either platform failed."""


class DownloadError(TransientNetworkError):
    """Media bytes could not be fetched from the source platform."""


class DestinationError(TransientNetworkError):
    """The destination platform rejected or failed a call."""


class RenderError(BridgeError):
    """A source payload could not be turned into a destination payload."""


class TopicUnavailableError(BridgeError):
    """No destination thread could be found or created for a conversation."""
