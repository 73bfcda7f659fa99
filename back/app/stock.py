"""
Stock policy for products.

With stock tracking on, ``is_active`` follows the quantity: nothing left means
inactive, anything left means active. With tracking off the active flag is a
manual switch and the quantity is informational only.
"""
from .models import Product, utcnow


class StockPolicyError(Exception):
    pass


class InsufficientStockError(StockPolicyError):
    def __init__(self, product_name: str, required: int, available: int):
        self.product_name = product_name
        self.required = required
        self.available = available
        super().__init__(
            f"Not enough stock for {product_name}: needed {required}, available {available}"
        )


def apply_stock_policy(product: Product) -> Product:
    """Re-derive the active flag. Call after every change to a product."""
    if product.stock_enabled:
        product.is_active = product.stock_quantity > 0
    product.updated_at = utcnow()
    return product


def set_manual_active(product: Product, is_active: bool) -> Product:
    if product.stock_enabled:
        if is_active and product.stock_quantity <= 0:
            raise StockPolicyError(f"{product.name} is out of stock and cannot be activated")
        if not is_active and product.stock_quantity > 0:
            raise StockPolicyError(
                f"{product.name} has stock tracking on; set its stock to 0 to deactivate it"
            )
    else:
        product.is_active = is_active
    return apply_stock_policy(product)


def update_stock(product: Product, stock_quantity: int, stock_enabled: bool) -> Product:
    if stock_quantity < 0:
        raise StockPolicyError("Stock quantity cannot be negative")
    product.stock_quantity = stock_quantity
    product.stock_enabled = stock_enabled
    return apply_stock_policy(product)


def consume_stock(product: Product, quantity: int) -> Product:
    """Take ``quantity`` units for an order line. No-op for untracked products."""
    if not product.stock_enabled:
        return product
    if quantity > product.stock_quantity:
        raise InsufficientStockError(product.name, quantity, product.stock_quantity)
    product.stock_quantity -= quantity
    return apply_stock_policy(product)


def restore_stock(product: Product, quantity: int) -> Product:
    if not product.stock_enabled or quantity <= 0:
        return product
    product.stock_quantity += quantity
    return apply_stock_policy(product)


def stock_level(product: Product, low_threshold: int) -> str:
    if not product.stock_enabled:
        return "unlimited"
    if product.stock_quantity == 0:
        return "out_of_stock"
    if product.stock_quantity < low_threshold:
        return "low"
    return "ok"
