"""Remote bookmark store collaborators."""

from .base import RemoteStore
from .client import RemoteStoreClient

__all__ = ["RemoteStore", "RemoteStoreClient"]
