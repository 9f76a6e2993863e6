"""Redis-backed cache medium."""

from typing import Iterable, Optional

from gymcore.cache_store.base import CacheMedium
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache_store/redis_cache_medium")

_GLOB_SPECIALS = "\\*?[]"


def _escape_glob(text: str) -> str:
    """Escape characters that SCAN MATCH would read as glob syntax."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIALS else ch for ch in text)


class RedisCacheMedium(CacheMedium):
    """Durable medium over a redis client.

    Keys are written without a Redis-side expiry; TTLs live inside the
    serialized entry and are enforced lazily by the CacheStore.
    """

    def __init__(self, client, *, scan_count: int = 500) -> None:
        logger.debug("Initializing RedisCacheMedium")
        self.client = client
        self.scan_count = scan_count

    @staticmethod
    def _decode(raw) -> str:
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    def read(self, key: str) -> Optional[str]:
        raw = self.client.get(key)
        if raw is None:
            return None
        return self._decode(raw)

    def write(self, key: str, value: str) -> None:
        self.client.set(key, value.encode("utf-8"))

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def keys(self, prefix: str) -> Iterable[str]:
        pattern = f"{_escape_glob(prefix)}*"
        return [self._decode(k) for k in self.client.scan_iter(match=pattern, count=self.scan_count)]
