from dataclasses import dataclass
from typing import Optional
from storefront.domain.models import Order, Subscription
from .errors import AuthorizationError

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as carried in the bearer token."""
    id: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def can_access_order(self, order: Order) -> bool:
        return self.is_admin or order.user_id == self.id

    def can_access_subscription(self, subscription: Subscription) -> bool:
        if self.is_admin:
            return True
        if not self.email:
            return False
        return subscription.customer_email.lower() == self.email.lower()


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise AuthorizationError("Admin access required")


def require_order_access(principal: Principal, order: Order) -> None:
    if not principal.can_access_order(order):
        raise AuthorizationError("Access denied")


def require_subscription_access(principal: Principal, subscription: Subscription) -> None:
    if not principal.can_access_subscription(subscription):
        raise AuthorizationError("Access denied")
