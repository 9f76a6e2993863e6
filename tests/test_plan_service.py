import datetime as dt
import unittest
from decimal import Decimal

from gymcore.backend import BackendError, InMemoryBackend, eq
from gymcore.cache import CacheKey, CacheStore
from gymcore.config import Settings
from gymcore.notifications import (
    EXPIRED_NOTIFICATIONS_KEY,
    EXPIRING_NOTIFICATIONS_KEY,
    PAYMENT_DUE_NOTIFICATIONS_KEY,
)
from gymcore.plan_service import PlanService, add_months, calculate_upgrade, parse_price

UTC = dt.timezone.utc
NOW = dt.datetime(2025, 1, 31, 9, 0, tzinfo=UTC)


class FailingBackend(InMemoryBackend):
    def update_row(self, table, key, fields):
        raise BackendError("write refused")


def _tables(**profile_fields):
    profile = {
        "id": "u1",
        "plan": 2,
        "approval_status": "approved",
        "payment_status": "paid",
        "plan_status": "active",
        "plan_start_date": NOW - dt.timedelta(days=20),
        "plan_expiry_date": NOW + dt.timedelta(days=10),
        "due_amount": Decimal("0"),
        "paid_amount": Decimal("1000"),
        "last_expiry_notification_sent": True,
    }
    profile.update(profile_fields)
    return {"profiles": [profile], "plans": [{"id": 2, "duration_months": 3}]}


class TestPlanService(unittest.TestCase):
    def make_service(self, backend_cls=InMemoryBackend, **profile_fields):
        self.backend = backend_cls(_tables(**profile_fields))
        self.cache = CacheStore(prefix="test_")
        for key in (CacheKey.PROFILE_DATA, EXPIRING_NOTIFICATIONS_KEY, EXPIRED_NOTIFICATIONS_KEY,
                    PAYMENT_DUE_NOTIFICATIONS_KEY):
            self.cache.set(key, ["stale"])
        return PlanService(self.backend, self.cache, settings=Settings(), clock=lambda: NOW)

    def profile(self):
        return self.backend.query_rows("profiles", [eq("id", "u1")])[0]

    def test_renewal_queues_after_current_expiry(self):
        service = self.make_service()
        self.assertTrue(service.process_plan_renewal("u1"))
        row = self.profile()
        self.assertEqual(row["plan_start_date"], NOW + dt.timedelta(days=10))
        self.assertEqual(row["plan_expiry_date"], dt.datetime(2025, 5, 10, 9, 0, tzinfo=UTC))
        self.assertEqual(row["plan_status"], "active")
        self.assertFalse(row["last_expiry_notification_sent"])
        self.assertFalse(self.cache.has(CacheKey.PROFILE_DATA))
        self.assertFalse(self.cache.has(EXPIRING_NOTIFICATIONS_KEY))
        self.assertFalse(self.cache.has(EXPIRED_NOTIFICATIONS_KEY))
        self.assertTrue(self.cache.has(PAYMENT_DUE_NOTIFICATIONS_KEY))

    def test_renewal_of_lapsed_plan_starts_now(self):
        service = self.make_service(plan_expiry_date=(NOW - dt.timedelta(days=3)).isoformat(), plan_status="expired")
        self.assertTrue(service.process_plan_renewal("u1"))
        row = self.profile()
        self.assertEqual(row["plan_start_date"], NOW)
        # Jan 31 + 3 months clamps to Apr 30
        self.assertEqual(row["plan_expiry_date"], dt.datetime(2025, 4, 30, 9, 0, tzinfo=UTC))

    def test_renewal_for_unknown_user_fails_softly(self):
        service = self.make_service()
        self.assertFalse(service.process_plan_renewal("nobody"))
        self.assertTrue(self.cache.has(CacheKey.PROFILE_DATA))

    def test_activate_and_expire(self):
        service = self.make_service(plan_status="upcoming", approval_status="pending")
        self.assertTrue(service.activate_plan("u1"))
        row = self.profile()
        self.assertEqual(row["plan_status"], "active")
        self.assertEqual(row["approval_status"], "approved")
        self.assertEqual(row["plan_expiry_date"], dt.datetime(2025, 2, 28, 9, 0, tzinfo=UTC))

        self.assertTrue(service.expire_plan("u1"))
        self.assertEqual(self.profile()["plan_status"], "expired")
        self.assertFalse(self.cache.has(EXPIRED_NOTIFICATIONS_KEY))

    def test_mark_upcoming(self):
        service = self.make_service()
        self.assertTrue(service.mark_plan_upcoming("u1"))
        self.assertEqual(self.profile()["plan_status"], "upcoming")
        self.assertFalse(self.cache.has(CacheKey.PROFILE_DATA))

    def test_partial_payment_sets_due(self):
        service = self.make_service()
        due_date = NOW + dt.timedelta(days=7)
        self.assertTrue(service.handle_partial_payment("u1", Decimal("0"), Decimal("40"), due_date))
        row = self.profile()
        self.assertEqual(row["payment_status"], "pending")
        self.assertEqual(row["due_amount"], Decimal("40"))
        self.assertEqual(row["payment_due_date"], due_date)
        self.assertFalse(self.cache.has(PAYMENT_DUE_NOTIFICATIONS_KEY))

    def test_collect_due_payment(self):
        service = self.make_service(due_amount=Decimal("50"), paid_amount=Decimal("100"), payment_status="pending")
        self.assertTrue(service.collect_due_payment("u1", Decimal("20")))
        row = self.profile()
        self.assertEqual(row["due_amount"], Decimal("30"))
        self.assertEqual(row["paid_amount"], Decimal("120"))
        self.assertEqual(row["payment_status"], "pending")

        self.assertTrue(service.collect_due_payment("u1", Decimal("45")))
        row = self.profile()
        self.assertEqual(row["due_amount"], Decimal("0"))
        self.assertEqual(row["payment_status"], "paid")

    def test_backend_failures_return_false(self):
        service = self.make_service(backend_cls=FailingBackend)
        self.assertFalse(service.expire_plan("u1"))
        self.assertFalse(service.activate_plan("u1"))
        self.assertFalse(service.collect_due_payment("u1", Decimal("1")))
        self.assertTrue(self.cache.has(CacheKey.PROFILE_DATA))

    def test_collection_and_renewal_lists(self):
        tables = _tables()
        tables["profiles"].extend(
            [
                {"id": "late", "plan_status": "expired", "due_amount": 25, "payment_due_date": NOW - dt.timedelta(days=9)},
                {"id": "later", "plan_status": "expired", "due_amount": 5, "payment_due_date": NOW - dt.timedelta(days=1)},
                {"id": "paid_up", "plan_status": "expired", "due_amount": 0, "payment_due_date": NOW},
                {"id": "soon", "plan_status": "active", "plan_expiry_date": NOW + dt.timedelta(days=2)},
            ]
        )
        service = PlanService(InMemoryBackend(tables), CacheStore(), settings=Settings(), clock=lambda: NOW)
        self.assertEqual([r["id"] for r in service.users_requiring_payment_collection()], ["late", "later"])
        # u1 expires in 10 days, outside the 7 day look-ahead
        self.assertEqual([r["id"] for r in service.users_with_upcoming_renewals()], ["soon"])

    def test_lists_fail_softly(self):
        service = PlanService(InMemoryBackend(), CacheStore(), settings=Settings(), clock=lambda: NOW)
        self.assertEqual(service.users_requiring_payment_collection(), [])
        self.assertEqual(service.users_with_upcoming_renewals(), [])


class TestUpgradeQuote(unittest.TestCase):
    def test_active_upgrade_credits_unused_days(self):
        profile = {
            "plan_start_date": NOW - dt.timedelta(days=20),
            "plan_expiry_date": NOW + dt.timedelta(days=10),
        }
        quote = calculate_upgrade(profile, {"price": "$3,000"}, {"price": "₹5000", "duration_months": 6}, NOW)
        self.assertEqual(quote.upgrade_type, "active_upgrade")
        self.assertEqual(quote.unused_value, Decimal("1000"))
        self.assertEqual(quote.payable_amount, Decimal("4000"))
        self.assertEqual(quote.new_plan_end_date, dt.datetime(2025, 7, 31, 9, 0, tzinfo=UTC))

    def test_expired_plan_pays_full_price(self):
        profile = {"plan_start_date": None, "plan_expiry_date": NOW - dt.timedelta(days=1)}
        quote = calculate_upgrade(profile, {"price": 1000}, {"price": 1500}, NOW)
        self.assertEqual(quote.upgrade_type, "post_expiry_upgrade")
        self.assertEqual(quote.unused_value, Decimal(0))
        self.assertEqual(quote.payable_amount, Decimal("1500"))
        self.assertEqual(quote.new_plan_start_date, NOW)

    def test_payable_never_negative(self):
        profile = {
            "plan_start_date": NOW - dt.timedelta(days=1),
            "plan_expiry_date": NOW + dt.timedelta(days=29),
        }
        quote = calculate_upgrade(profile, {"price": 3000}, {"price": 100}, NOW)
        self.assertEqual(quote.payable_amount, Decimal(0))


class TestHelpers(unittest.TestCase):
    def test_add_months_clamps_day(self):
        self.assertEqual(add_months(dt.datetime(2024, 1, 31), 1), dt.datetime(2024, 2, 29))
        self.assertEqual(add_months(dt.datetime(2024, 11, 15), 3), dt.datetime(2025, 2, 15))

    def test_parse_price(self):
        self.assertEqual(parse_price("$1,499.50"), Decimal("1499.50"))
        self.assertEqual(parse_price(None), Decimal("0"))
        self.assertEqual(parse_price(800), Decimal("800"))


if __name__ == "__main__":
    unittest.main()
