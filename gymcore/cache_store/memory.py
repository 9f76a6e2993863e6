"""In-memory cache medium, intended for single-process use and tests."""

import threading
from typing import Iterable, Optional

from gymcore.cache_store.base import CacheMedium

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache_store/in_memory_cache_medium")


class InMemoryCacheMedium(CacheMedium):
    """Thread-safe dict of serialized cache entries."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryCacheMedium")
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self, prefix: str) -> Iterable[str]:
        """Snapshot of matching keys, safe to iterate while deleting."""
        with self._lock:
            return [k for k in self._values if k.startswith(prefix)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
