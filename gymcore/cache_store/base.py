"""Shared protocol for cache storage media."""

from typing import Iterable, Optional, Protocol


class CacheMedium(Protocol):
    """Raw string key/value medium underneath a CacheStore.

    Media store opaque serialized entries and know nothing about TTLs.
    Failures are raised; the CacheStore decides how to degrade.
    """

    def read(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    def write(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    def delete(self, key: str) -> None:
        """Delete a key without raising if it is absent."""

    def keys(self, prefix: str) -> Iterable[str]:
        """Return every stored key that starts with ``prefix``."""
