"""
Remote operation clients.

The lifecycle layer only depends on ``RemoteClient`` and the request value
objects; ``QingCloudClient`` is the concrete HTTP implementation.
"""

from .base import (
    ClientConfig,
    RemoteCallError,
    RemoteClient,
    RemoteTransportError,
    ServerBusyError,
    is_transient_busy,
)
from .qingcloud import QingCloudClient

__all__ = [
    "ClientConfig",
    "RemoteClient",
    "RemoteCallError",
    "RemoteTransportError",
    "ServerBusyError",
    "QingCloudClient",
    "is_transient_busy",
]
