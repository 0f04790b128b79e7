from typing import Optional

import jwt
from fastapi import BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from storefront.core_settings import get_settings
from storefront.infrastructure.db import get_db
from storefront.application.notifications import NotificationDispatcher
from storefront.application.order_service import OrderLifecycleManager
from storefront.application.payments import PaymentReconciler
from storefront.application.principal import Principal
from storefront.application.subscription_service import SubscriptionScheduler
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "

def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None

def get_principal(request: Request) -> Principal:
    """Resolve the caller from the bearer token issued by the auth service."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing token")
    token_data = decode_access_token(auth_header[len(BEARER_PREFIX):])
    if not token_data or not token_data.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")

    principal = Principal(
        id=str(token_data["sub"]),
        email=token_data.get("email"),
        role=token_data.get("role", "user"),
    )
    set_request_context(user_id=principal.id)
    return principal

def get_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal

def get_notifier(background_tasks: BackgroundTasks) -> NotificationDispatcher:
    return NotificationDispatcher(get_settings(), background_tasks=background_tasks)

def get_order_manager(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OrderLifecycleManager:
    return OrderLifecycleManager(db, notifier=notifier)

def get_payment_reconciler(orders: OrderLifecycleManager = Depends(get_order_manager)) -> PaymentReconciler:
    return PaymentReconciler(orders)

def get_scheduler(
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> SubscriptionScheduler:
    return SubscriptionScheduler(db, notifier=notifier)
