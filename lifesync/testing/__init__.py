"""Test doubles for lifesync collaborators."""

from .fakes import InMemoryRemoteStore, StaticSession, content_hash

__all__ = ["InMemoryRemoteStore", "StaticSession", "content_hash"]
