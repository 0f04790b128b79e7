from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from storefront.domain.models import Order
from storefront.domain.statuses import OrderStatus, PaymentMethod, PaymentStatus
from shared.core import get_logger
from .errors import StorefrontError, ValidationError, InvalidStateError
from .order_service import OrderLifecycleManager
from .principal import Principal, require_admin
from .schemas import PaymentVerification

logger = get_logger(__name__)


class PaymentReconciler:
    """Applies payment outcomes to orders.

    Gateway signatures are verified upstream; a call to ``verify_payment``
    is treated as a trusted confirmation. Cash-on-delivery orders are
    settled separately with ``mark_settled``.
    """

    def __init__(self, orders: OrderLifecycleManager):
        self.orders = orders
        self.db = orders.db

    def verify_payment(self, principal: Principal, reference: PaymentVerification) -> Order:
        order = self.orders.get_order(principal, reference.order_id)

        if order.payment_method != PaymentMethod.GATEWAY.value:
            raise ValidationError("Payment verification only applies to gateway payments")
        if order.order_status == OrderStatus.CANCELLED.value:
            raise InvalidStateError("Cannot verify payment for a cancelled order")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            if order.payment_id == reference.razorpay_payment_id:
                # Gateway callbacks are retried; the same confirmation is a no-op
                return order
            raise InvalidStateError("Order has already been paid")

        try:
            order.receipt_id = reference.razorpay_order_id
            order.payment_id = reference.razorpay_payment_id
            order.payment_signature = reference.razorpay_signature
            order.paid_at = self.orders.clock()
            order.payment_status = PaymentStatus.COMPLETED.value
            self.orders.apply_transition(order, OrderStatus.CONFIRMED, "Payment verified and confirmed")
            self.orders.commit()
        except (StorefrontError, SQLAlchemyError):
            self.db.rollback()
            raise

        logger.info(
            f"Payment verified for order {order.order_number}",
            extra={'extra_fields': {'order_id': order.id, 'payment_id': order.payment_id}}
        )
        self.orders.notifier.notify("order.payment_verified", {
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": order.user_id,
            "payment_id": order.payment_id,
            "amount": str(order.total),
            "currency": self.orders.settings.CURRENCY,
        })
        return order

    def mark_settled(self, principal: Principal, order_id: int, note: Optional[str] = None) -> Order:
        """Record cash collected for a cash-on-delivery order."""
        require_admin(principal)
        order = self.orders.get(order_id)

        if order.payment_method != PaymentMethod.CASH_ON_DELIVERY.value:
            raise ValidationError("Only cash-on-delivery orders can be settled manually")
        if order.order_status == OrderStatus.CANCELLED.value:
            raise InvalidStateError("Cannot settle a cancelled order")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            raise InvalidStateError("Order payment is already settled")

        try:
            order.payment_status = PaymentStatus.COMPLETED.value
            order.paid_at = self.orders.clock()
            if note:
                order.notes = f"{order.notes}\n{note}" if order.notes else note
            self.orders.commit()
        except (StorefrontError, SQLAlchemyError):
            self.db.rollback()
            raise

        logger.info(
            f"Cash payment settled for order {order.order_number}",
            extra={'extra_fields': {'order_id': order.id, 'settled_by': principal.id}}
        )
        return order
