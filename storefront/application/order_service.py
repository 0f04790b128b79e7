from datetime import timedelta
from math import ceil
from typing import Callable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import SQLAlchemyError

from storefront.core_settings import Settings, get_settings
from storefront.domain.models import Order, OrderItem, Product, utcnow
from storefront.domain.statuses import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    NON_CANCELLABLE_ORDER_STATUSES,
)
from shared.core import get_logger
from .errors import (
    StorefrontError,
    ValidationError,
    NotFoundError,
    InvalidStateError,
    InvalidTransitionError,
    InsufficientStockError,
    ConcurrentModificationError,
)
from .inventory import InventoryLedger
from .notifications import NotificationDispatcher
from .pricing import PricingCalculator
from .principal import Principal, require_order_access
from .schemas import OrderCreate

logger = get_logger(__name__)

orders = Order.__table__

# Once reached, an order only accepts repeats of the same status
TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.DELIVERED})


class OrderLifecycleManager:
    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.notifier = notifier or NotificationDispatcher(self.settings)
        self.pricing = PricingCalculator()
        self.ledger = InventoryLedger(db)
        self.clock = clock

    # Queries

    def get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_order(self, principal: Principal, order_id: int) -> Order:
        order = self.get(order_id)
        require_order_access(principal, order)
        return order

    def list_orders(self, principal: Principal, page: int = 1, limit: int = 10, status: Optional[str] = None) -> dict:
        """List the caller's orders, newest first, with pagination metadata."""
        page = max(page, 1)
        limit = max(limit, 1)
        query = select(Order).where(Order.user_id == principal.id)
        if status:
            query = query.where(Order.order_status == self._parse_status(status, ValidationError).value)

        total_orders = self.db.scalar(select(func.count()).select_from(query.subquery()))
        rows = self.db.scalars(
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        total_pages = ceil(total_orders / limit) if total_orders else 0
        return {
            "orders": rows,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_orders": total_orders,
                "limit": limit,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    def order_stats(self, principal: Principal) -> dict:
        rows = self.db.execute(
            select(Order.order_status, func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
            .where(Order.user_id == principal.id)
            .group_by(Order.order_status)
        ).all()
        total_spent = self.db.scalar(
            select(func.coalesce(func.sum(Order.total), 0)).where(
                Order.user_id == principal.id,
                Order.payment_status == PaymentStatus.COMPLETED.value,
            )
        )
        return {
            "total_orders": sum(count for _, count, _ in rows),
            "total_spent": total_spent,
            "status_breakdown": [
                {"status": status, "count": count, "total_amount": amount}
                for status, count, amount in rows
            ],
        }

    # Creation

    def create_order(self, principal: Principal, data: OrderCreate) -> Order:
        if not data.items:
            raise ValidationError("Order must contain at least one item")
        try:
            payment_method = PaymentMethod(data.payment_method)
        except ValueError:
            raise ValidationError("Valid payment method is required")

        try:
            order_items = []
            for item in data.items:
                if item.quantity < 1:
                    raise ValidationError("Quantity must be at least 1")
                product = self.db.get(Product, item.product_id)
                if not product:
                    raise ValidationError(f"Product with ID {item.product_id} not found")
                level = product.stock_level
                if not level.covers(item.quantity):
                    raise InsufficientStockError(product.name, level.quantity, item.quantity)

                order_items.append(OrderItem(
                    product_id=product.id,
                    name=product.name,
                    price=product.price,
                    quantity=item.quantity,
                    total_price=self.pricing.line_total(product.price, item.quantity),
                    image=product.primary_image,
                ))

            # Conditional decrements; a concurrent buyer can still make these fail
            for oi in order_items:
                self.ledger.reserve(oi.product_id, oi.quantity, product_name=oi.name)

            pricing = self.pricing.price_order(order_items)
            now = self.clock()
            order = Order(
                user_id=principal.id,
                items=order_items,
                shipping_address=data.shipping_address.model_dump(),
                billing_address=data.billing_address.model_dump() if data.billing_address else None,
                payment_method=payment_method.value,
                payment_status=PaymentStatus.PENDING.value,
                subtotal=pricing.subtotal,
                tax=pricing.tax,
                shipping_fee=pricing.shipping_fee,
                discount=pricing.discount,
                total=pricing.total,
                estimated_delivery=now + timedelta(days=self.settings.ESTIMATED_DELIVERY_DAYS),
                notes=data.notes,
                inventory_released=False,
                created_at=now,
            )
            order.status_log.append(OrderStatus.PENDING, at=now)
            self.db.add(order)
            self.db.flush()  # assign id
            order.order_number = f"FM{order.id:06d}"
            self.commit()
        except (StorefrontError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(
            f"Order {order.order_number} created",
            extra={'extra_fields': {
                'order_id': order.id,
                'user_id': principal.id,
                'total': str(order.total),
                'items': len(order.items),
            }}
        )
        self.notifier.notify("order.created", self._event_payload(order))
        return order

    # Status machine

    def apply_transition(self, order: Order, new_status, note: Optional[str] = None) -> Order:
        """Move ``order`` to ``new_status`` and run its side effects, without committing."""
        target = self._parse_status(new_status, InvalidTransitionError)
        current = OrderStatus(order.order_status)

        if current in TERMINAL_ORDER_STATUSES and target != current:
            raise InvalidTransitionError(f"Cannot change status of an order that is {current.value}")
        if target == OrderStatus.CANCELLED and current in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            raise InvalidTransitionError(f"Cannot cancel order that is {current.value}")

        now = self.clock()
        order.status_log.append(target, note, at=now)

        if target == OrderStatus.CANCELLED:
            self._restore_inventory(order)
            if order.payment_status == PaymentStatus.COMPLETED.value:
                order.payment_status = PaymentStatus.REFUNDED.value
        elif target == OrderStatus.DELIVERED and order.actual_delivery is None:
            order.actual_delivery = now
        return order

    def transition_status(self, order: Order, new_status, note: Optional[str] = None) -> Order:
        previous = order.order_status
        try:
            self.apply_transition(order, new_status, note)
            self.commit()
        except (StorefrontError, SQLAlchemyError):
            self.db.rollback()
            raise

        logger.info(
            f"Order {order.order_number} moved from {previous} to {order.order_status}",
            extra={'extra_fields': {'order_id': order.id, 'from': previous, 'to': order.order_status}}
        )
        event = "order.cancelled" if order.order_status == OrderStatus.CANCELLED.value else "order.status_changed"
        self.notifier.notify(event, self._event_payload(order, note=note))
        return order

    def update_status(self, principal: Principal, order_id: int, new_status: str, note: Optional[str] = None) -> Order:
        order = self.get_order(principal, order_id)
        return self.transition_status(order, new_status, note)

    def cancel_order(self, order: Order, reason: Optional[str] = None) -> Order:
        if OrderStatus(order.order_status) in NON_CANCELLABLE_ORDER_STATUSES:
            raise InvalidStateError(f"Cannot cancel order that is {order.order_status}")
        return self.transition_status(order, OrderStatus.CANCELLED, reason or "Cancelled by user")

    def cancel(self, principal: Principal, order_id: int, reason: Optional[str] = None) -> Order:
        order = self.get_order(principal, order_id)
        return self.cancel_order(order, reason)

    # Helpers

    def _restore_inventory(self, order: Order) -> None:
        # Claim the restore first; only the request that flips the marker puts stock back
        claimed = self.db.execute(
            update(orders)
            .where(orders.c.id == order.id, orders.c.inventory_released.is_(False))
            .values(inventory_released=True)
        ).rowcount == 1
        if not claimed:
            logger.info(
                f"Stock for order {order.order_number} already restored, skipping",
                extra={'extra_fields': {'order_id': order.id}}
            )
            return
        set_committed_value(order, "inventory_released", True)
        for item in order.items:
            self.ledger.release(item.product_id, item.quantity)

    def commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentModificationError("Order was modified by another request, please retry")

    @staticmethod
    def _parse_status(value, error_cls) -> OrderStatus:
        try:
            return OrderStatus(value)
        except ValueError:
            raise error_cls(f"Invalid order status: {value}")

    @staticmethod
    def _event_payload(order: Order, **extra) -> dict:
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "user_id": order.user_id,
            "order_status": order.order_status,
            "payment_status": order.payment_status,
            "total": str(order.total),
        }
        payload.update({k: v for k, v in extra.items() if v is not None})
        return payload
