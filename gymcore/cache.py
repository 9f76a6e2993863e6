"""Expiring key/value cache used in front of backend reads.

Entries are serialized as JSON documents holding the payload, the write time
(epoch seconds) and the TTL. Expiry is lazy: an expired entry is deleted the
next time its key is read. There is no size bound, so callers that mint one
key per dynamic identifier (``workout_detail_<id>``) should clear those keys
with ``clear_pattern`` when they are done with them.
"""

from __future__ import annotations

import fnmatch
import json
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from functools import lru_cache
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import TypeAdapter
from pydantic_core import to_jsonable_python

from gymcore.cache_store.base import CacheMedium
from gymcore.cache_store.memory import InMemoryCacheMedium
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache")

T = TypeVar("T")

DEFAULT_PREFIX = "gym_cache_"


class CacheTTL(IntEnum):
    """TTL classes in seconds, by how often the underlying data changes."""
    SHORT = 60
    MEDIUM = 300
    LONG = 600
    VERY_LONG = 900


class CacheKey(str, Enum):
    """Logical cache key names used across the application."""
    # profile
    PROFILE_DATA = "profile_data"
    PROFILE_AVATAR = "profile_avatar"
    # dashboard
    DASHBOARD_STATS = "dashboard_stats"
    DASHBOARD_TREND = "dashboard_trend"
    DASHBOARD_TREND_PERIOD = "dashboard_trend_period"
    # workouts
    USER_PROGRAMS = "user_programs"
    WORKOUT_DETAIL = "workout_detail_"
    WORKOUT_CATEGORIES = "workout_categories"
    # explore
    EXPLORE_CATEGORIES = "explore_categories"
    EXPLORE_VIDEOS = "explore_videos"
    EXPLORE_FEATURED = "explore_featured"
    # admin
    ADMIN_STATS = "admin_stats"
    ADMIN_USERS = "admin_users"
    ADMIN_ORDERS = "admin_orders"
    ADMIN_VIDEOS = "admin_videos"
    # auth
    USER_ROLE = "user_role"
    # ai
    AI_ADVICE = "ai_advice"
    AI_RECOMMENDATIONS = "ai_recommendations"
    AI_LEARNING_PATTERNS = "ai_learning_patterns"
    # notifications
    USER_NOTIFICATIONS = "user_notifications"
    UNREAD_NOTIFICATION_COUNT = "unread_notification_count"


def _logical(key: str | CacheKey) -> str:
    """Return the plain string for a key (str-mixin enums format unreliably)."""
    if isinstance(key, Enum):
        return key.value
    return key


def cache_key(base: str | CacheKey, suffix: object) -> str:
    """Build an identifier-suffixed key.

    Bases ending in ``_`` (``workout_detail_``) take the suffix directly,
    others get a ``_`` separator: ``cache_key(CacheKey.PROFILE_DATA,
    "expired_notifications")`` -> ``profile_data_expired_notifications``.
    """
    name = _logical(base)
    if name.endswith("_"):
        return f"{name}{suffix}"
    return f"{name}_{suffix}"


@dataclass
class CacheEntry(Generic[T]):
    """Payload plus the metadata needed to decide validity."""
    data: T
    created_at: float  # epoch seconds
    ttl: float  # seconds

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_valid(self, now: float) -> bool:
        return self.age(now) <= self.ttl

    def dumps(self) -> str:
        return json.dumps(
            {"data": to_jsonable_python(self.data), "created_at": self.created_at, "ttl": self.ttl}
        )

    @classmethod
    def loads(cls, raw: str) -> "CacheEntry[Any]":
        doc = json.loads(raw)
        return cls(data=doc["data"], created_at=float(doc["created_at"]), ttl=float(doc["ttl"]))


@lru_cache(maxsize=None)
def _adapter(tp: Any) -> TypeAdapter:
    return TypeAdapter(tp)


class CacheStore:
    """Namespaced, TTL-aware cache over a pluggable medium.

    No method raises on storage or decoding problems: they are logged and
    treated as a miss (reads) or a no-op (writes). One lock per store makes
    writes, removals and bulk clears linearizable against each other.
    """

    def __init__(self, medium: CacheMedium | None = None, *, prefix: str = DEFAULT_PREFIX) -> None:
        """Wrap a medium (in-memory by default) under a namespace prefix."""
        self.medium = medium if medium is not None else InMemoryCacheMedium()
        self.prefix = prefix
        self._lock = threading.RLock()

    def _key(self, key: str | CacheKey) -> str:
        """Return the physical key for a logical key."""
        return f"{self.prefix}{_logical(key)}"

    def _load(self, physical_key: str) -> Optional[CacheEntry[Any]]:
        """Read and decode an entry; None when absent or undecodable."""
        raw = self.medium.read(physical_key)
        if raw is None:
            return None
        try:
            return CacheEntry.loads(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding undecodable cache entry %s: %s", physical_key, exc)
            return None

    def set(self, key: str | CacheKey, value: Any, ttl_seconds: float = CacheTTL.MEDIUM) -> None:
        """Store ``value`` under ``key``, replacing any existing entry."""
        physical = self._key(key)
        try:
            raw = CacheEntry(data=value, created_at=time.time(), ttl=float(ttl_seconds)).dumps()
            with self._lock:
                self.medium.write(physical, raw)
        except Exception as exc:
            logger.error("Cache set error for %s: %s", physical, exc)

    def get(self, key: str | CacheKey, type_: Any = None) -> Any:
        """Return the cached payload, or None if missing or expired.

        When ``type_`` is given (``list[PlanNotification]``, a model class,
        ...) the stored JSON is validated back into it; a payload that no
        longer validates counts as a miss.
        """
        physical = self._key(key)
        try:
            with self._lock:
                entry = self._load(physical)
                if entry is None:
                    return None
                if not entry.is_valid(time.time()):
                    logger.debug("Cache entry %s expired", physical)
                    self.medium.delete(physical)
                    return None
        except Exception as exc:
            logger.error("Cache get error for %s: %s", physical, exc)
            return None

        if type_ is None:
            return entry.data
        try:
            return _adapter(type_).validate_python(entry.data)
        except Exception as exc:
            logger.warning("Cached payload for %s does not match %r: %s", physical, type_, exc)
            return None

    def has(self, key: str | CacheKey) -> bool:
        """True if a valid entry exists."""
        return self.get(key) is not None

    def remove(self, key: str | CacheKey) -> None:
        """Delete one entry; missing keys are ignored."""
        physical = self._key(key)
        try:
            with self._lock:
                self.medium.delete(physical)
        except Exception as exc:
            logger.error("Cache remove error for %s: %s", physical, exc)

    def clear_all(self) -> None:
        """Delete every entry under this store's prefix."""
        try:
            with self._lock:
                for physical in self.medium.keys(self.prefix):
                    self.medium.delete(physical)
        except Exception as exc:
            logger.error("Cache clear error: %s", exc)

    def clear_pattern(self, pattern: str) -> int:
        """Delete entries whose logical key starts with ``pattern``.

        ``pattern`` is anchored at the start of the logical key and may use
        ``*`` and ``?`` wildcards: ``"profile"`` and ``"profile_*"`` both
        remove ``profile_data`` and ``profile_avatar``. Returns the number of
        entries removed.
        """
        glob = pattern if pattern.endswith("*") else f"{pattern}*"
        removed = 0
        try:
            with self._lock:
                for physical in self.medium.keys(self.prefix):
                    if fnmatch.fnmatchcase(physical[len(self.prefix):], glob):
                        self.medium.delete(physical)
                        removed += 1
        except Exception as exc:
            logger.error("Cache clear pattern error for %r: %s", pattern, exc)
        return removed

    def get_age(self, key: str | CacheKey) -> Optional[int]:
        """Whole seconds since the entry was written, expired or not."""
        try:
            entry = self._load(self._key(key))
        except Exception as exc:
            logger.error("Cache age lookup error: %s", exc)
            return None
        if entry is None:
            return None
        return math.floor(entry.age(time.time()))

    def get_or_set(
        self,
        key: str | CacheKey,
        loader: Callable[[], T],
        ttl_seconds: float = CacheTTL.MEDIUM,
        type_: Any = None,
    ) -> T:
        """Read-through helper: return the cached value or load and store it.

        The loader runs outside the lock; concurrent misses may both load and
        the last write wins. Loader exceptions propagate.
        """
        cached = self.get(key, type_)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl_seconds)
        return value
