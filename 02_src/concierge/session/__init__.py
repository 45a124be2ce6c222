"""Session context store module."""

from .backends import ISessionBackend, InMemorySessionBackend, RedisSessionBackend
from .context_store import SessionContextStore, similarity

__all__ = [
    "ISessionBackend",
    "InMemorySessionBackend",
    "RedisSessionBackend",
    "SessionContextStore",
    "similarity",
]
