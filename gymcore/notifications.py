"""Derive plan alerts (expiring, expired, payment due) from account rows.

Each condition is queried and cached on its own, so building the feed for
many users costs at most one backend round trip per condition per TTL, and
acknowledging an alert only drops the expiring-plans slice.

Failures never escape: a condition whose query fails contributes no
notifications for that call and is not cached.
"""
from __future__ import annotations

import datetime as dt
import math
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from gymcore import config
from gymcore.backend import Backend, Order, eq, gt, lt, lte
from gymcore.cache import CacheKey, CacheStore, cache_key
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="notifications")

EXPIRING_NOTIFICATIONS_KEY = cache_key(CacheKey.PROFILE_DATA, "expiring_notifications")
EXPIRED_NOTIFICATIONS_KEY = cache_key(CacheKey.PROFILE_DATA, "expired_notifications")
PAYMENT_DUE_NOTIFICATIONS_KEY = cache_key(CacheKey.PROFILE_DATA, "payment_due_notifications")

PROFILE_ACTION = "PROFILE"
ONE_DAY = dt.timedelta(days=1)


class NotificationKind(str, Enum):
    """Closed set of plan alert types; one user may hold several."""
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    PAYMENT_DUE = "payment_due"


class PlanNotification(BaseModel):
    """User-facing plan alert with precomputed text."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    kind: NotificationKind
    days_left: Optional[int] = None
    expiry_date: Optional[dt.datetime] = None
    due_amount: Optional[Decimal] = None
    title: str
    message: str
    action_url: Optional[str] = PROFILE_ACTION


NotificationList = List[PlanNotification]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _to_datetime(value: Any) -> Optional[dt.datetime]:
    """Normalize backend timestamps (ISO strings, dates, naive datetimes) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        value = dt.datetime.combine(value, dt.time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def days_until(expiry: dt.datetime, now: dt.datetime) -> int:
    """Whole days left before ``expiry``, rounding partial days up."""
    return math.ceil((expiry - now) / ONE_DAY)


def format_days(days: int) -> str:
    return f"{days} day{'s' if days != 1 else ''}"


class NotificationService:
    """Build and cache plan notifications over a Backend and a CacheStore."""

    def __init__(
        self,
        backend: Backend,
        cache: CacheStore,
        *,
        settings: config.Settings | None = None,
        clock: Callable[[], dt.datetime] | None = None,
        concurrent: bool = True,
    ) -> None:
        settings = settings or config.settings
        self.backend = backend
        self.cache = cache
        self.table = settings.profiles_table
        self.ttl_seconds = settings.notification_ttl_seconds
        self.warning_window = dt.timedelta(days=settings.expiry_warning_days)
        self.currency_symbol = settings.currency_symbol
        self.concurrent = concurrent
        self._clock = clock or _utcnow

    def _cached(
        self,
        key: str,
        label: str,
        build: Callable[[dt.datetime], NotificationList],
    ) -> NotificationList:
        """Serve one condition from cache, or build it and store the result."""
        cached = self.cache.get(key, NotificationList)
        if cached is not None:
            logger.debug("Serving %s notifications from cache (%d)", label, len(cached))
            return cached
        try:
            notifications = build(self._clock())
        except Exception as exc:
            logger.error("Error getting %s notifications: %s", label, exc)
            return []
        self.cache.set(key, notifications, self.ttl_seconds)
        logger.info("Cached %d %s notifications", len(notifications), label)
        return notifications

    # -- conditions ---------------------------------------------------------

    def _build_expiring(self, now: dt.datetime) -> NotificationList:
        rows = self.backend.query_rows(
            self.table,
            [
                eq("approval_status", "approved"),
                eq("payment_status", "paid"),
                lte("plan_expiry_date", now + self.warning_window),
                gt("plan_expiry_date", now),
            ],
            columns=["id", "full_name", "plan_expiry_date", "plan_status", "last_expiry_notification_sent"],
            order_by=[Order("plan_expiry_date")],
        )
        notifications = []
        for row in rows:
            expiry = _to_datetime(row["plan_expiry_date"])
            days_left = days_until(expiry, now)
            notifications.append(
                PlanNotification(
                    user_id=str(row["id"]),
                    kind=NotificationKind.EXPIRING_SOON,
                    days_left=days_left,
                    expiry_date=expiry,
                    title="Plan Expiring Soon",
                    message=f"Your plan expires in {format_days(days_left)}. Renew now to continue!",
                )
            )
        return notifications

    def _build_expired(self, now: dt.datetime) -> NotificationList:
        rows = self.backend.query_rows(
            self.table,
            [
                eq("approval_status", "approved"),
                lt("plan_expiry_date", now),
                eq("plan_status", "expired"),
            ],
            columns=["id", "full_name", "plan_expiry_date", "due_amount", "payment_due_date"],
            order_by=[Order("plan_expiry_date")],
        )
        return [
            PlanNotification(
                user_id=str(row["id"]),
                kind=NotificationKind.EXPIRED,
                expiry_date=_to_datetime(row["plan_expiry_date"]),
                due_amount=_to_decimal(row.get("due_amount")),
                title="Plan Expired",
                message="Your subscription has expired. Please renew to continue your fitness journey!",
            )
            for row in rows
        ]

    def _build_payment_due(self, now: dt.datetime) -> NotificationList:
        rows = self.backend.query_rows(
            self.table,
            [
                eq("approval_status", "approved"),
                lte("payment_due_date", now),
                gt("due_amount", 0),
            ],
            columns=["id", "full_name", "payment_due_date", "due_amount"],
            order_by=[Order("payment_due_date")],
        )
        notifications = []
        for row in rows:
            amount = _to_decimal(row["due_amount"])
            notifications.append(
                PlanNotification(
                    user_id=str(row["id"]),
                    kind=NotificationKind.PAYMENT_DUE,
                    due_amount=amount,
                    title="Payment Due",
                    message=f"Please pay the outstanding amount of {self.currency_symbol}{amount:.2f}",
                )
            )
        return notifications

    # -- public API ---------------------------------------------------------

    def expiring_plans_notifications(self) -> NotificationList:
        """Approved, paid accounts whose plan ends within the warning window."""
        return self._cached(EXPIRING_NOTIFICATIONS_KEY, "expiring plans", self._build_expiring)

    def expired_plans_notifications(self) -> NotificationList:
        """Approved accounts whose plan is marked expired and already ended."""
        return self._cached(EXPIRED_NOTIFICATIONS_KEY, "expired plans", self._build_expired)

    def payment_due_notifications(self) -> NotificationList:
        """Approved accounts with a positive amount due on or before now."""
        return self._cached(PAYMENT_DUE_NOTIFICATIONS_KEY, "payment due", self._build_payment_due)

    def notifications_by_kind(self, kind: NotificationKind) -> NotificationList:
        fetchers: Dict[NotificationKind, Callable[[], NotificationList]] = {
            NotificationKind.EXPIRING_SOON: self.expiring_plans_notifications,
            NotificationKind.EXPIRED: self.expired_plans_notifications,
            NotificationKind.PAYMENT_DUE: self.payment_due_notifications,
        }
        return fetchers[NotificationKind(kind)]()

    def user_notifications(self, user_id: str) -> NotificationList:
        """All notifications for one user: expiring, then expired, then payment due.

        The three conditions are fetched concurrently when ``concurrent`` is
        set; the merge order does not depend on which finishes first.
        """
        fetchers = (
            self.expiring_plans_notifications,
            self.expired_plans_notifications,
            self.payment_due_notifications,
        )
        if self.concurrent:
            with ThreadPoolExecutor(max_workers=len(fetchers), thread_name_prefix="notifications") as pool:
                futures = [pool.submit(fetch) for fetch in fetchers]
                results = [future.result() for future in futures]
        else:
            results = [fetch() for fetch in fetchers]
        return [n for batch in results for n in batch if n.user_id == user_id]

    def acknowledge(self, user_id: str) -> None:
        """Flag the expiring-plan alert as sent and drop the cached slice.

        The slice is dropped even when the update fails; failures are logged
        and otherwise ignored.
        """
        try:
            self.backend.update_row(self.table, ("id", user_id), {"last_expiry_notification_sent": True})
        except Exception as exc:
            logger.error("Error marking notification as sent for %s: %s", user_id, exc)
        finally:
            self.cache.remove(EXPIRING_NOTIFICATIONS_KEY)


def summarize(notifications: List[PlanNotification]) -> Mapping[str, int]:
    """Count notifications per kind, for badges."""
    counts = {kind.value: 0 for kind in NotificationKind}
    for notification in notifications:
        counts[notification.kind.value] += 1
    return counts
