from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from storefront.application.principal import Principal
from storefront.application.subscription_service import SubscriptionScheduler
from storefront.application.schemas import (
    SubscriptionCreate,
    SubscriptionUpdate,
    SubscriptionRead,
    SubscriptionPage,
    SubscriptionList,
    SubscriptionStats,
    SweepResult,
)
from .deps import get_principal, get_admin, get_scheduler

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])

# Admin routes

@router.post("/", response_model=SubscriptionRead, status_code=201)
def create_subscription(
    payload: SubscriptionCreate,
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.create(principal, payload)

@router.get("/", response_model=SubscriptionPage)
def list_subscriptions(
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100, description="Match name, customer name or email"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.list(principal, status=status, type=type, search=search, page=page, limit=limit)

@router.get("/admin/due", response_model=SubscriptionList)
def due_subscriptions(
    start: Optional[date] = Query(None, description="First day of the window, defaults to today"),
    end: Optional[date] = Query(None, description="Last day of the window, defaults to start"),
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    due = scheduler.list_due(start, end)
    return {"subscriptions": due, "count": len(due)}

@router.get("/admin/stats", response_model=SubscriptionStats)
def subscription_stats(
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.stats()

@router.patch("/admin/check-expired", response_model=SweepResult)
def check_expired(
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    count = scheduler.sweep_expired()
    return {"message": f"{count} subscriptions marked as expired", "count": count}

# Customer routes

@router.get("/my-subscriptions", response_model=SubscriptionList)
def my_subscriptions(
    principal: Principal = Depends(get_principal),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    found = scheduler.list_for_email(principal.email)
    return {"subscriptions": found, "count": len(found)}

@router.get("/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(
    subscription_id: int,
    principal: Principal = Depends(get_principal),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.get_by_id(principal, subscription_id)

@router.put("/{subscription_id}", response_model=SubscriptionRead)
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdate,
    principal: Principal = Depends(get_principal),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.update(principal, subscription_id, payload)

@router.patch("/{subscription_id}/pause", response_model=SubscriptionRead)
def pause_subscription(
    subscription_id: int,
    principal: Principal = Depends(get_principal),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.pause(principal, subscription_id)

@router.patch("/{subscription_id}/resume", response_model=SubscriptionRead)
def resume_subscription(
    subscription_id: int,
    principal: Principal = Depends(get_principal),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.resume(principal, subscription_id)

@router.patch("/{subscription_id}/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    subscription_id: int,
    principal: Principal = Depends(get_principal),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.cancel(principal, subscription_id)

@router.patch("/{subscription_id}/complete-delivery", response_model=SubscriptionRead)
def complete_delivery(
    subscription_id: int,
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    return scheduler.complete_delivery(principal, subscription_id)

@router.delete("/{subscription_id}", status_code=204)
def delete_subscription(
    subscription_id: int,
    principal: Principal = Depends(get_admin),
    scheduler: SubscriptionScheduler = Depends(get_scheduler),
):
    scheduler.delete(principal, subscription_id)
    return None
