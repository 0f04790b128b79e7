"""Stock tracking variants for catalog products.

A product either tracks its available quantity (``Managed``) or is sold
without limit (``Unmanaged``). Callers branch on the variant type instead of
testing the nullable ``stock`` column directly.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Managed:
    quantity: int

    def covers(self, requested: int) -> bool:
        return self.quantity >= requested


@dataclass(frozen=True)
class Unmanaged:
    def covers(self, requested: int) -> bool:
        return True


StockLevel = Union[Managed, Unmanaged]


def stock_level_from_column(stock: Optional[int]) -> StockLevel:
    """Map the persisted ``products.stock`` value onto a variant."""
    if stock is None:
        return Unmanaged()
    return Managed(quantity=stock)
