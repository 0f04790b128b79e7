"""Order and subscription totals.

Pure functions over item snapshots; nothing here touches the database.
Shipping fee and discount are flat extension points and default to zero.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol, Union

Number = Union[int, float, Decimal]

CENTS = Decimal("0.01")


class PricedLine(Protocol):
    price: Number
    quantity: int


def to_money(value: Number) -> Decimal:
    # str() keeps floats like 0.1 from dragging binary noise into Decimal
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Pricing:
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount: Decimal
    total: Decimal


class PricingCalculator:
    def line_total(self, price: Number, quantity: int) -> Decimal:
        return to_money(to_money(price) * quantity)

    def subtotal(self, lines: Iterable[PricedLine]) -> Decimal:
        return sum((self.line_total(l.price, l.quantity) for l in lines), Decimal("0.00"))

    def price_order(
        self,
        lines: Iterable[PricedLine],
        shipping_fee: Number = 0,
        discount: Number = 0,
        tax: Number = 0,
    ) -> Pricing:
        subtotal = self.subtotal(lines)
        shipping_fee = to_money(shipping_fee)
        discount = to_money(discount)
        return Pricing(
            subtotal=subtotal,
            tax=to_money(tax),
            shipping_fee=shipping_fee,
            discount=discount,
            total=subtotal + shipping_fee - discount,
        )

    def subscription_total(self, lines: Iterable[PricedLine]) -> Decimal:
        return self.subtotal(lines)
