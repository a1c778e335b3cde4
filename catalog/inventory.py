# catalog/inventory.py
"""
Inventory ledger.

Stock only moves through ``reserve`` and ``release``. Both are single
conditional UPDATE statements, so concurrent reservations against the same
product are serialized by the database row lock and can never oversell.
"""
import logging

from django.db.models import F

from orders.exceptions import InsufficientStock, InvariantViolation

from .models import Product

logger = logging.getLogger(__name__)


def reserve(product_id, quantity):
    """Decrement stock if the product is active and has ``quantity`` units left"""
    if quantity < 1:
        raise InvariantViolation(f"Cannot reserve {quantity} units of product {product_id}")

    updated = Product.objects.filter(
        pk=product_id,
        is_active=True,
        stock_quantity__gte=quantity,
    ).update(stock_quantity=F('stock_quantity') - quantity)

    if not updated:
        product = Product.objects.filter(pk=product_id).values('name', 'stock_quantity', 'is_active').first()
        if product is None or not product['is_active']:
            raise InsufficientStock(f"Product {product_id} is not available")
        raise InsufficientStock(
            f"Insufficient stock for \"{product['name']}\". Only {product['stock_quantity']} available"
        )

    logger.info(f"Reserved {quantity} unit(s) of product {product_id}")


def release(product_id, quantity):
    """Return ``quantity`` units to stock"""
    if quantity < 1:
        raise InvariantViolation(f"Cannot release {quantity} units of product {product_id}")

    updated = Product.objects.filter(pk=product_id).update(stock_quantity=F('stock_quantity') + quantity)
    if not updated:
        raise InvariantViolation(f"Cannot release stock for missing product {product_id}")

    logger.info(f"Released {quantity} unit(s) of product {product_id}")


def release_order_items(order):
    """Return every line of ``order`` to stock"""
    for item in order.items.all():
        release(item.product_id, item.quantity)
