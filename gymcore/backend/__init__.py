"""Row-oriented backend used by the notification and plan services."""

from .base import Backend, BackendError, Filter, Order, eq, gt, gte, lt, lte, neq
from .factory import build_backend
from .memory import InMemoryBackend
from .sql import SqlBackend

__all__ = [
    "build_backend",
    "Backend",
    "BackendError",
    "Filter",
    "Order",
    "InMemoryBackend",
    "SqlBackend",
    "eq",
    "neq",
    "lt",
    "lte",
    "gt",
    "gte",
]
