from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    GATEWAY = "razorpay"
    CASH_ON_DELIVERY = "cod"


class SubscriptionType(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Orders past these points can no longer be cancelled
NON_CANCELLABLE_ORDER_STATUSES = frozenset({
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})

SUBSCRIPTION_WINDOW_DAYS = {
    SubscriptionType.WEEKLY: 7,
    SubscriptionType.BIWEEKLY: 14,
    SubscriptionType.MONTHLY: 30,
}
