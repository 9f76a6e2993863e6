"""Plan lifecycle mutations and the cache slices they invalidate."""
from __future__ import annotations

import calendar
import datetime as dt
import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel

from gymcore import config
from gymcore.backend import Backend, Order, eq, gt, lte
from gymcore.cache import CacheKey, CacheStore
from gymcore.notifications import (
    EXPIRED_NOTIFICATIONS_KEY,
    EXPIRING_NOTIFICATIONS_KEY,
    PAYMENT_DUE_NOTIFICATIONS_KEY,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="plan_service")

_NON_NUMERIC = re.compile(r"[^0-9.]")


def add_months(value: dt.datetime, months: int) -> dt.datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def parse_price(price: Any) -> Decimal:
    """Read a display price such as ``"$1,499.00"`` as a Decimal."""
    cleaned = _NON_NUMERIC.sub("", str(price))
    return Decimal(cleaned or "0")


def _parse_ts(value: Any) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value


class UpgradeQuote(BaseModel):
    """Prorated price for switching plans."""
    unused_value: Decimal
    payable_amount: Decimal
    new_plan_start_date: dt.datetime
    new_plan_end_date: dt.datetime
    upgrade_type: str  # active_upgrade | post_expiry_upgrade


def calculate_upgrade(
    profile: Mapping[str, Any],
    current_plan: Mapping[str, Any],
    new_plan: Mapping[str, Any],
    now: dt.datetime,
) -> UpgradeQuote:
    """Quote an upgrade, crediting the unused days of the current plan.

    Accounts without an active plan pay the full new price starting now.
    Amounts are rounded to whole currency units.
    """
    new_price = parse_price(new_plan.get("price"))
    duration = int(new_plan.get("duration_months") or 1)
    start = _parse_ts(profile.get("plan_start_date"))
    expiry = _parse_ts(profile.get("plan_expiry_date"))

    if start is None or expiry is None or expiry <= now:
        return UpgradeQuote(
            unused_value=Decimal(0),
            payable_amount=new_price,
            new_plan_start_date=now,
            new_plan_end_date=add_months(now, duration),
            upgrade_type="post_expiry_upgrade",
        )

    one_day = dt.timedelta(days=1)
    total_days = max(1, math.ceil((expiry - start) / one_day))
    remaining_days = math.ceil((expiry - now) / one_day)
    daily_rate = parse_price(current_plan.get("price")) / total_days
    unused_value = (daily_rate * remaining_days).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    payable = max(Decimal(0), (new_price - unused_value).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return UpgradeQuote(
        unused_value=unused_value,
        payable_amount=payable,
        new_plan_start_date=now,
        new_plan_end_date=add_months(now, duration),
        upgrade_type="active_upgrade",
    )


class PlanService:
    """Apply plan state changes to account rows and drop stale cache entries.

    Every mutation returns True on success and False on any failure, which is
    logged; nothing is raised to the caller.
    """

    def __init__(
        self,
        backend: Backend,
        cache: CacheStore,
        *,
        settings: config.Settings | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        settings = settings or config.settings
        self.backend = backend
        self.cache = cache
        self.profiles_table = settings.profiles_table
        self.plans_table = settings.plans_table
        self.renewal_lookahead = dt.timedelta(days=settings.renewal_lookahead_days)
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    def _fetch_one(self, table: str, row_id: Any) -> Mapping[str, Any]:
        rows = self.backend.query_rows(table, [eq("id", row_id)], limit=1)
        if not rows:
            raise LookupError(f"No row with id {row_id!r} in {table}")
        return rows[0]

    def _update_profile(self, user_id: str, fields: Mapping[str, Any], *extra_keys: str) -> None:
        self.backend.update_row(self.profiles_table, ("id", user_id), fields)
        self.cache.remove(CacheKey.PROFILE_DATA)
        for key in extra_keys:
            self.cache.remove(key)

    def process_plan_renewal(self, user_id: str) -> bool:
        """Queue a renewal after the current expiry (or from now if lapsed)."""
        try:
            profile = self._fetch_one(self.profiles_table, user_id)
            now = self._clock()
            expiry = _parse_ts(profile.get("plan_expiry_date"))
            start = expiry if expiry and expiry > now else now

            plan = self._fetch_one(self.plans_table, profile.get("plan"))
            duration = int(plan.get("duration_months") or 1)

            self._update_profile(
                user_id,
                {
                    "plan_start_date": start,
                    "plan_expiry_date": add_months(start, duration),
                    "plan_status": "active",
                    "last_expiry_notification_sent": False,
                    "payment_status": "paid",
                },
                EXPIRING_NOTIFICATIONS_KEY,
                EXPIRED_NOTIFICATIONS_KEY,
            )
            return True
        except Exception as exc:
            logger.error("Error processing plan renewal for %s: %s", user_id, exc)
            return False

    def mark_plan_upcoming(self, user_id: str) -> bool:
        """Approved but not yet started."""
        try:
            self._update_profile(user_id, {"plan_status": "upcoming"})
            return True
        except Exception as exc:
            logger.error("Error marking plan as upcoming for %s: %s", user_id, exc)
            return False

    def activate_plan(self, user_id: str) -> bool:
        """Start a one-month plan now and mark the account approved and paid."""
        try:
            now = self._clock()
            self._update_profile(
                user_id,
                {
                    "plan_status": "active",
                    "plan_start_date": now,
                    "plan_expiry_date": add_months(now, 1),
                    "approval_status": "approved",
                    "payment_status": "paid",
                },
            )
            return True
        except Exception as exc:
            logger.error("Error activating plan for %s: %s", user_id, exc)
            return False

    def expire_plan(self, user_id: str) -> bool:
        try:
            self._update_profile(
                user_id, {"plan_status": "expired"}, EXPIRING_NOTIFICATIONS_KEY, EXPIRED_NOTIFICATIONS_KEY
            )
            return True
        except Exception as exc:
            logger.error("Error expiring plan for %s: %s", user_id, exc)
            return False

    def handle_partial_payment(
        self,
        user_id: str,
        paid_amount: Decimal,
        due_amount: Decimal,
        due_date: dt.datetime,
    ) -> bool:
        """Record a partial payment and schedule the remainder."""
        try:
            self._update_profile(
                user_id,
                {
                    "paid_amount": paid_amount,
                    "due_amount": due_amount,
                    "payment_due_date": due_date,
                    "payment_status": "paid" if paid_amount > 0 else "pending",
                },
                PAYMENT_DUE_NOTIFICATIONS_KEY,
            )
            return True
        except Exception as exc:
            logger.error("Error handling partial payment for %s: %s", user_id, exc)
            return False

    def collect_due_payment(self, user_id: str, amount_collected: Decimal) -> bool:
        """Apply a collected amount against the outstanding due."""
        try:
            profile = self._fetch_one(self.profiles_table, user_id)
            collected = Decimal(str(amount_collected))
            due = Decimal(str(profile.get("due_amount") or 0))
            paid = Decimal(str(profile.get("paid_amount") or 0))
            new_due = max(Decimal(0), due - collected)
            self._update_profile(
                user_id,
                {
                    "paid_amount": paid + collected,
                    "due_amount": new_due,
                    "payment_status": "pending" if new_due > 0 else "paid",
                },
                PAYMENT_DUE_NOTIFICATIONS_KEY,
            )
            return True
        except Exception as exc:
            logger.error("Error collecting due payment for %s: %s", user_id, exc)
            return False

    def users_requiring_payment_collection(self) -> List[Mapping[str, Any]]:
        """Expired plans that still owe money, oldest due date first."""
        try:
            return self.backend.query_rows(
                self.profiles_table,
                [eq("plan_status", "expired"), gt("due_amount", 0)],
                columns=["id", "full_name", "email", "phone_number", "plan_expiry_date", "due_amount",
                         "payment_due_date"],
                order_by=[Order("payment_due_date")],
            )
        except Exception as exc:
            logger.error("Error getting users requiring payment collection: %s", exc)
            return []

    def users_with_upcoming_renewals(self) -> List[Mapping[str, Any]]:
        """Active plans ending within the renewal look-ahead, soonest first."""
        now = self._clock()
        try:
            return self.backend.query_rows(
                self.profiles_table,
                [
                    eq("plan_status", "active"),
                    lte("plan_expiry_date", now + self.renewal_lookahead),
                    gt("plan_expiry_date", now),
                ],
                columns=["id", "full_name", "email", "phone_number", "plan", "plan_expiry_date"],
                order_by=[Order("plan_expiry_date")],
            )
        except Exception as exc:
            logger.error("Error getting upcoming renewals: %s", exc)
            return []
