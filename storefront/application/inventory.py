from sqlalchemy import select, update
from sqlalchemy.orm import Session
from storefront.domain.models import Product
from storefront.domain.stock import StockLevel, Managed, Unmanaged, stock_level_from_column
from shared.core import get_logger
from .errors import InsufficientStockError, NotFoundError

logger = get_logger(__name__)

products = Product.__table__


class InventoryLedger:
    """Stock movements for catalog products.

    Every change is a single conditional UPDATE, so two concurrent
    reservations can never both succeed against the same last units.
    The ledger never commits; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def level(self, product_id: int) -> StockLevel:
        row = self.db.execute(
            select(products.c.stock).where(products.c.id == product_id)
        ).first()
        if row is None:
            raise NotFoundError(f"Product with ID {product_id} not found")
        return stock_level_from_column(row.stock)

    def reserve(self, product_id: int, quantity: int, product_name: str = "") -> StockLevel:
        level = self.level(product_id)
        if isinstance(level, Unmanaged):
            return level

        result = self.db.execute(
            update(products)
            .where(
                products.c.id == product_id,
                products.c.stock.is_not(None),
                products.c.stock >= quantity,
            )
            .values(stock=products.c.stock - quantity)
        )
        if result.rowcount != 1:
            current = self.level(product_id)
            available = current.quantity if isinstance(current, Managed) else 0
            raise InsufficientStockError(product_name or f"product {product_id}", available, quantity)

        self._expire_cached(product_id)
        logger.info(
            f"Reserved {quantity} of product {product_id}",
            extra={'extra_fields': {'product_id': product_id, 'delta': -quantity}}
        )
        return Managed(quantity=level.quantity - quantity)

    def release(self, product_id: int, quantity: int) -> bool:
        """Put stock back. Returns False when the product is unmanaged or gone."""
        result = self.db.execute(
            update(products)
            .where(products.c.id == product_id, products.c.stock.is_not(None))
            .values(stock=products.c.stock + quantity)
        )
        if result.rowcount != 1:
            return False

        self._expire_cached(product_id)
        logger.info(
            f"Released {quantity} of product {product_id}",
            extra={'extra_fields': {'product_id': product_id, 'delta': quantity}}
        )
        return True

    def _expire_cached(self, product_id: int) -> None:
        # Core UPDATEs bypass the identity map; drop any stale loaded stock value
        cached = self.db.identity_map.get(Session.identity_key(Product, product_id))
        if cached is not None:
            self.db.expire(cached, ["stock"])
