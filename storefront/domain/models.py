from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Integer, Boolean, Text, JSON
from datetime import datetime, timezone
from typing import Optional, Iterator

from .statuses import OrderStatus, PaymentStatus, SubscriptionStatus
from .stock import StockLevel, stock_level_from_column


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how every DateTime column is stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[float] = mapped_column(Numeric(10, 2))
    images: Mapped[list] = mapped_column(JSON, default=list)
    # NULL means the product is sold without stock tracking
    stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def stock_level(self) -> StockLevel:
        return stock_level_from_column(self.stock)

    @property
    def primary_image(self) -> str:
        return self.images[0] if self.images else ""


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    # Derived from id right after the insert, see OrderLifecycleManager.create_order
    order_number: Mapped[Optional[str]] = mapped_column(String(20), unique=True, index=True, nullable=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    shipping_address: Mapped[dict] = mapped_column(JSON)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(20))
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)
    # Written only by StatusLog.append; read through the order_status hybrid
    _order_status: Mapped[str] = mapped_column("order_status", String(20), index=True, default=OrderStatus.PENDING.value)
    # Gateway payment details
    receipt_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Pricing
    subtotal: Mapped[float] = mapped_column(Numeric(10, 2))
    tax: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    shipping_fee: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    discount: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    total: Mapped[float] = mapped_column(Numeric(10, 2))
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_delivery: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Set once stock for a cancelled order has been put back
    inventory_released: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    _status_history: Mapped[list["OrderStatusEvent"]] = relationship(
        "OrderStatusEvent", back_populates="order", cascade="all, delete-orphan", order_by="OrderStatusEvent.id"
    )

    __mapper_args__ = {"version_id_col": version}

    @hybrid_property
    def order_status(self) -> str:
        return self._order_status

    @property
    def status_history(self) -> tuple:
        return tuple(self._status_history)

    @property
    def status_log(self) -> "StatusLog":
        return StatusLog(self)

    @property
    def pricing(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping_fee": self.shipping_fee,
            "discount": self.discount,
            "total": self.total,
        }


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    # Product snapshot data (captured at order creation time)
    product_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(200))
    price: Mapped[float] = mapped_column(Numeric(10, 2))
    quantity: Mapped[int]
    total_price: Mapped[float] = mapped_column(Numeric(10, 2))
    image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    order: Mapped[Order] = relationship("Order", back_populates="items")


class OrderStatusEvent(Base):
    __tablename__ = "order_status_events"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True)
    status: Mapped[str] = mapped_column(String(20))
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    order: Mapped[Order] = relationship("Order", back_populates="_status_history")


class StatusLog:
    """Append-only view over an order's status history.

    The order's current status is always the status of the last event;
    ``append`` is the only way to move it.
    """

    def __init__(self, order: Order):
        self._order = order

    def append(self, status: OrderStatus, note: Optional[str] = None, at: Optional[datetime] = None) -> OrderStatusEvent:
        event = OrderStatusEvent(status=OrderStatus(status).value, note=note, timestamp=at or utcnow())
        self._order._status_history.append(event)
        self._order._order_status = event.status
        return event

    @property
    def current(self) -> Optional[OrderStatus]:
        if not self._order._status_history:
            return None
        return OrderStatus(self._order._status_history[-1].status)

    def __iter__(self) -> Iterator[OrderStatusEvent]:
        return iter(tuple(self._order._status_history))

    def __len__(self) -> int:
        return len(self._order._status_history)


class Subscription(Base):
    __tablename__ = "subscriptions"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    # Customer snapshot, deliberately not tied to a user account
    customer_first_name: Mapped[str] = mapped_column(String(100))
    customer_last_name: Mapped[str] = mapped_column(String(100))
    customer_email: Mapped[str] = mapped_column(String(255), index=True)
    customer_phone: Mapped[str] = mapped_column(String(50))
    customer_address: Mapped[str] = mapped_column(String(500))
    customer_city: Mapped[str] = mapped_column(String(100))
    customer_state: Mapped[str] = mapped_column(String(100))
    customer_zip_code: Mapped[str] = mapped_column(String(20))
    customer_country: Mapped[str] = mapped_column(String(100), default="India")
    type: Mapped[str] = mapped_column(String(20), index=True)
    status: Mapped[str] = mapped_column(String(20), index=True, default=SubscriptionStatus.ACTIVE.value)
    total_amount: Mapped[float] = mapped_column(Numeric(10, 2))
    start_date: Mapped[datetime] = mapped_column(DateTime)
    end_date: Mapped[datetime] = mapped_column(DateTime)
    next_delivery_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    last_delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(20), default="cod")
    delivery_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    items: Mapped[list["SubscriptionItem"]] = relationship(
        "SubscriptionItem", back_populates="subscription", cascade="all, delete-orphan", order_by="SubscriptionItem.id"
    )

    CUSTOMER_FIELDS = (
        "first_name", "last_name", "email", "phone", "address",
        "city", "state", "zip_code", "country",
    )

    @property
    def customer_details(self) -> dict:
        return {f: getattr(self, f"customer_{f}") for f in self.CUSTOMER_FIELDS}

    @customer_details.setter
    def customer_details(self, details: dict) -> None:
        for field in self.CUSTOMER_FIELDS:
            if field in details and details[field] is not None:
                setattr(self, f"customer_{field}", details[field])


class SubscriptionItem(Base):
    __tablename__ = "subscription_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id"))
    product_id: Mapped[int] = mapped_column(Integer)
    quantity: Mapped[int]
    # Unit price captured when the subscription was created or re-priced
    price: Mapped[float] = mapped_column(Numeric(10, 2))
    subscription: Mapped[Subscription] = relationship("Subscription", back_populates="items")


class StoreProfile(Base):
    __tablename__ = "store_profiles"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
