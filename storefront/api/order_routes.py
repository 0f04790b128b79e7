from typing import Optional
from fastapi import APIRouter, Depends, Query
from storefront.application.order_service import OrderLifecycleManager
from storefront.application.payments import PaymentReconciler
from storefront.application.principal import Principal
from storefront.application.schemas import (
    OrderCreate,
    OrderRead,
    OrderPage,
    OrderStats,
    OrderStatusUpdate,
    OrderCancel,
    PaymentVerification,
    PaymentSettlement,
)
from .deps import get_principal, get_admin, get_order_manager, get_payment_reconciler

router = APIRouter(prefix="/orders", tags=["orders"])

@router.get("/", response_model=OrderPage)
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, description="Filter by order status"),
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycleManager = Depends(get_order_manager),
):
    """List the caller's orders, newest first."""
    return orders.list_orders(principal, page=page, limit=limit, status=status)

@router.get("/stats", response_model=OrderStats)
def order_stats(
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycleManager = Depends(get_order_manager),
):
    return orders.order_stats(principal)

@router.post("/", response_model=OrderRead, status_code=201)
def create_order(
    payload: OrderCreate,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycleManager = Depends(get_order_manager),
):
    return orders.create_order(principal, payload)

@router.post("/payment/verify", response_model=OrderRead)
def verify_payment(
    payload: PaymentVerification,
    principal: Principal = Depends(get_principal),
    payments: PaymentReconciler = Depends(get_payment_reconciler),
):
    return payments.verify_payment(principal, payload)

@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycleManager = Depends(get_order_manager),
):
    return orders.get_order(principal, order_id)

@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycleManager = Depends(get_order_manager),
):
    return orders.update_status(principal, order_id, payload.status, payload.note)

@router.patch("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: int,
    payload: Optional[OrderCancel] = None,
    principal: Principal = Depends(get_principal),
    orders: OrderLifecycleManager = Depends(get_order_manager),
):
    return orders.cancel(principal, order_id, payload.reason if payload else None)

@router.patch("/{order_id}/settle", response_model=OrderRead)
def settle_cash_payment(
    order_id: int,
    payload: Optional[PaymentSettlement] = None,
    principal: Principal = Depends(get_admin),
    payments: PaymentReconciler = Depends(get_payment_reconciler),
):
    """Mark a cash-on-delivery order as paid."""
    return payments.mark_settled(principal, order_id, payload.note if payload else None)
