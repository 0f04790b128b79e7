from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from storefront.domain.statuses import PaymentMethod, SubscriptionType

# Orders

class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "USA"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)

class OrderCreate(BaseModel):
    items: list[OrderItemCreate]
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: str
    notes: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None

class OrderCancel(BaseModel):
    reason: Optional[str] = None

class PaymentVerification(BaseModel):
    order_id: int
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: Optional[str] = None

class PaymentSettlement(BaseModel):
    note: Optional[str] = None

class OrderItemRead(BaseModel):
    product_id: int
    name: str
    price: float
    quantity: int
    total_price: float
    image: Optional[str] = None
    class Config:
        from_attributes = True

class StatusEventRead(BaseModel):
    status: str
    timestamp: datetime
    note: Optional[str] = None
    class Config:
        from_attributes = True

class PricingRead(BaseModel):
    subtotal: float
    tax: float
    shipping_fee: float
    discount: float
    total: float

class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: str
    items: list[OrderItemRead]
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: str
    payment_status: str
    order_status: str
    status_history: list[StatusEventRead]
    pricing: PricingRead
    receipt_id: Optional[str] = None
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    limit: int
    has_next: bool
    has_prev: bool

class OrderPage(BaseModel):
    orders: list[OrderRead]
    pagination: Pagination

class StatusBreakdown(BaseModel):
    status: str
    count: int
    total_amount: float

class OrderStats(BaseModel):
    total_orders: int
    total_spent: float
    status_breakdown: list[StatusBreakdown]

# Subscriptions

class CustomerDetails(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str = "India"

class CustomerDetailsUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

class SubscriptionItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)

class SubscriptionCreate(BaseModel):
    name: str
    type: SubscriptionType
    items: list[SubscriptionItemCreate]
    customer_details: CustomerDetails
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    delivery_instructions: Optional[str] = None
    start_date: Optional[datetime] = None

class SubscriptionUpdate(BaseModel):
    name: Optional[str] = None
    items: Optional[list[SubscriptionItemCreate]] = None
    customer_details: Optional[CustomerDetailsUpdate] = None
    payment_method: Optional[PaymentMethod] = None
    delivery_instructions: Optional[str] = None

class SubscriptionItemRead(BaseModel):
    product_id: int
    quantity: int
    price: float
    class Config:
        from_attributes = True

class SubscriptionRead(BaseModel):
    id: int
    name: str
    type: str
    status: str
    customer_details: CustomerDetails
    items: list[SubscriptionItemRead]
    total_amount: float
    start_date: datetime
    end_date: datetime
    next_delivery_date: datetime
    last_delivery_date: Optional[datetime] = None
    payment_method: str
    delivery_instructions: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class SubscriptionPagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

class SubscriptionPage(BaseModel):
    subscriptions: list[SubscriptionRead]
    pagination: SubscriptionPagination

class SubscriptionList(BaseModel):
    subscriptions: list[SubscriptionRead]
    count: int

class SubscriptionStats(BaseModel):
    status_stats: dict[str, int]
    total_active_revenue: float
    type_stats: dict[str, int]

class SweepResult(BaseModel):
    message: str
    count: int

# Store profile

class StoreProfileRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    class Config:
        from_attributes = True
