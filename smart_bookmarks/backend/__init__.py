"""Backend adapters: PostgREST over HTTP and an in-process backend."""

from .rest import RestBookmarkBackend
from .memory import InMemoryBookmarkBackend, InMemoryChangeChannel, InMemoryChannelConnection

__all__ = [
    "RestBookmarkBackend",
    "InMemoryBookmarkBackend",
    "InMemoryChangeChannel",
    "InMemoryChannelConnection",
]
