# Overview: Stock Ledger; guarded atomic mutation of product stock_quantity.

"""
Stock Ledger

Stock invariants (authoritative):
- stock_quantity never goes negative as a result of a sale.
- Sales decrement with a single conditional UPDATE:
      UPDATE products SET stock_quantity = stock_quantity - :q
      WHERE id = :id AND shop_id = :shop AND stock_quantity >= :q
  and check the affected-row count. There is no SELECT-then-UPDATE window
  for a concurrent sale to slip into.
- Purchases only ever increase stock, and overwrite cost_price_cents with
  the purchase unit price (purchases are the source of current cost).
- Every mutation runs inside the caller's unit of work; nothing here
  commits.
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..errors import NotFound, InsufficientStock, InvalidQuantity
from .concurrency import lock_for_update, expire_cached


def get_product_for_shop(
    shop_id: int,
    product_id: int,
    *,
    lock: bool = False,
) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or product.shop_id != shop_id:
        raise NotFound(
            f"Product with ID {product_id} not found",
            details={"product_id": product_id},
        )
    return product


def reserve_and_decrement(shop_id: int, product_id: int, quantity: int) -> None:
    """
    Atomically check availability and take `quantity` units out of stock.

    Raises InsufficientStock (with available/requested) when the row exists
    but cannot cover the quantity, NotFound when it is not in this shop.
    """
    if quantity is None or quantity <= 0:
        raise InvalidQuantity(
            f"Invalid quantity for product {product_id}. Quantity must be greater than 0.",
            details={"product_id": product_id, "quantity": quantity},
        )

    result = db.session.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.shop_id == shop_id,
            Product.stock_quantity >= quantity,
        )
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    expire_cached(Product, product_id)

    if result.rowcount == 1:
        return

    product = get_product_for_shop(shop_id, product_id)
    raise InsufficientStock(
        product_id=product.id,
        product_name=product.name,
        available=product.stock_quantity,
        requested=quantity,
    )


def increment(shop_id: int, product_id: int, quantity: int, new_cost_price_cents: int) -> None:
    """Receive `quantity` units into stock at the given unit cost."""
    if quantity is None or quantity <= 0:
        raise InvalidQuantity(
            f"Invalid quantity for item {product_id}. Quantity must be greater than 0.",
            details={"product_id": product_id, "quantity": quantity},
        )

    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.shop_id == shop_id)
        .values(
            stock_quantity=Product.stock_quantity + quantity,
            cost_price_cents=new_cost_price_cents,
        )
        .execution_options(synchronize_session=False)
    )
    expire_cached(Product, product_id)

    if result.rowcount != 1:
        raise NotFound(
            f"Product with ID {product_id} not found",
            details={"product_id": product_id},
        )


def low_stock_products(shop_id: int, product_ids=None, active_only: bool = True) -> list[Product]:
    """
    Products at or below their min_stock_level, active ones only unless
    active_only is False (sales still decrement inactive products).

    Reads current row values (populate_existing), so calling this right
    after decrements inside the same unit sees the post-sale stock.
    """
    query = db.session.query(Product).filter(
        Product.shop_id == shop_id,
        Product.stock_quantity <= Product.min_stock_level,
    )
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if product_ids is not None:
        ids = list(product_ids)
        if not ids:
            return []
        query = query.filter(Product.id.in_(ids))

    return query.order_by(Product.id).populate_existing().all()
