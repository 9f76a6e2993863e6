"""HTTP API over the notification feed, plan lifecycle and cache admin."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel

from .cache import CacheStore
from .notifications import NotificationKind, NotificationService, PlanNotification, summarize
from .plan_service import PlanService
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="gymcore/api")

router = APIRouter()


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notifications


def get_plan_service(request: Request) -> PlanService:
    return request.app.state.plans


class NotificationSummary(BaseModel):
    """Per-kind notification counts for badge display."""
    user_id: str
    total: int
    expiring_soon: int
    expired: int
    payment_due: int


class PlanActionResponse(BaseModel):
    user_id: str
    action: str
    ok: bool


class CollectPaymentRequest(BaseModel):
    amount: Decimal


class CacheClearResponse(BaseModel):
    pattern: Optional[str] = None
    removed: Optional[int] = None


class CacheAgeResponse(BaseModel):
    key: str
    age_seconds: int


@router.get("/users/{user_id}/notifications", response_model=list[PlanNotification])
def user_notifications(user_id: str, service: NotificationService = Depends(get_notification_service)):
    """Expiring, expired and payment-due alerts for one user, in that order."""
    return service.user_notifications(user_id)


@router.get("/users/{user_id}/notifications/summary", response_model=NotificationSummary)
def user_notification_summary(user_id: str, service: NotificationService = Depends(get_notification_service)):
    notifications = service.user_notifications(user_id)
    counts = summarize(notifications)
    return NotificationSummary(user_id=user_id, total=len(notifications), **counts)


@router.post("/users/{user_id}/notifications/acknowledge", status_code=status.HTTP_204_NO_CONTENT)
def acknowledge_notification(user_id: str, service: NotificationService = Depends(get_notification_service)):
    """Mark the expiring-plan alert as surfaced; always succeeds from the caller's view."""
    service.acknowledge(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/notifications/{kind}", response_model=list[PlanNotification])
def notifications_by_kind(kind: NotificationKind, service: NotificationService = Depends(get_notification_service)):
    """All accounts matching one condition (admin view)."""
    return service.notifications_by_kind(kind)


def _plan_action(user_id: str, action: str, ok: bool) -> PlanActionResponse:
    if not ok:
        logger.warning("Plan action %s failed for %s", action, user_id)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Could not {action} plan")
    return PlanActionResponse(user_id=user_id, action=action, ok=ok)


@router.post("/users/{user_id}/plan/renew", response_model=PlanActionResponse)
def renew_plan(user_id: str, plans: PlanService = Depends(get_plan_service)):
    return _plan_action(user_id, "renew", plans.process_plan_renewal(user_id))


@router.post("/users/{user_id}/plan/activate", response_model=PlanActionResponse)
def activate_plan(user_id: str, plans: PlanService = Depends(get_plan_service)):
    return _plan_action(user_id, "activate", plans.activate_plan(user_id))


@router.post("/users/{user_id}/plan/expire", response_model=PlanActionResponse)
def expire_plan(user_id: str, plans: PlanService = Depends(get_plan_service)):
    return _plan_action(user_id, "expire", plans.expire_plan(user_id))


@router.post("/users/{user_id}/payments/collect", response_model=PlanActionResponse)
def collect_payment(
    user_id: str,
    payload: CollectPaymentRequest,
    plans: PlanService = Depends(get_plan_service),
):
    if payload.amount <= 0:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="amount must be positive")
    return _plan_action(user_id, "collect payment for", plans.collect_due_payment(user_id, payload.amount))


@router.delete("/cache", response_model=CacheClearResponse)
def clear_cache(pattern: Optional[str] = None, cache: CacheStore = Depends(get_cache)):
    """Clear entries matching ``pattern``, or everything when it is omitted."""
    if pattern:
        removed = cache.clear_pattern(pattern)
        logger.info("Cleared %d cache entries matching %r", removed, pattern)
        return CacheClearResponse(pattern=pattern, removed=removed)
    cache.clear_all()
    logger.info("Cleared all cache entries")
    return CacheClearResponse()


@router.get("/cache/{key}/age", response_model=CacheAgeResponse)
def cache_age(key: str, cache: CacheStore = Depends(get_cache)):
    age = cache.get_age(key)
    if age is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not cached")
    return CacheAgeResponse(key=key, age_seconds=age)
