"""Remote system of record clients."""

from order_sync.services.remote.base import RemoteBackend
from order_sync.services.remote.http import HttpRemoteBackend

__all__ = ["RemoteBackend", "HttpRemoteBackend"]
