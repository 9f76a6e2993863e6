"""Storage media for the expiring cache store."""

from .base import CacheMedium
from .memory import InMemoryCacheMedium
from .redis import RedisCacheMedium

__all__ = [
    "CacheMedium",
    "InMemoryCacheMedium",
    "RedisCacheMedium",
]
