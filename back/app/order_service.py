"""
Order Service

The order aggregate and its lifecycle:
- open -> sent -> paid (paid is terminal)
- at most one open/sent order per table
- prices captured when a line is added
- total recomputed from the persisted lines after every mutation
- kitchen-sent flag per line only ever goes from False to True

Functions flush but never commit; the caller owns the transaction.
"""

import logging

from sqlalchemy import func
from sqlmodel import Session, select

from .models import (
    ACTIVE_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Product,
    StaffMember,
    Table,
    TableStatus,
    utcnow,
)
from .stock import InsufficientStockError, consume_stock, restore_stock

logger = logging.getLogger(__name__)


class OrderError(Exception):
    """Base class for rejected order operations."""
    status_code = 400


class OrderClosedError(OrderError):
    status_code = 409

    def __init__(self, message: str = "Order is already paid and cannot be changed"):
        super().__init__(message)


class AlreadyPaidError(OrderError):
    status_code = 409

    def __init__(self):
        super().__init__("Order is already paid")


class ProductUnavailableError(OrderError):
    pass


class ItemAlreadySentError(OrderError):
    status_code = 409

    def __init__(self):
        super().__init__("Item was already sent to the kitchen and cannot be changed")


class NothingToSendError(OrderError):
    def __init__(self):
        super().__init__("No new items to send to the kitchen")


class EmptyOrderError(OrderError):
    def __init__(self):
        super().__init__("Cannot pay an order without items")


def get_items(session: Session, order_id: int) -> list[OrderItem]:
    session.flush()
    return list(
        session.exec(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.id)
        ).all()
    )


def active_order_for_table(session: Session, table_id: int) -> Order | None:
    return session.exec(
        select(Order).where(
            Order.table_id == table_id,
            Order.status.in_(ACTIVE_ORDER_STATUSES),
        ).order_by(Order.created_at)
    ).first()


def next_order_number(session: Session, tenant_id: int) -> int:
    last = session.exec(
        select(func.max(Order.order_number)).where(Order.tenant_id == tenant_id)
    ).one()
    return (last or 0) + 1


def sync_table_status(session: Session, table_id: int) -> TableStatus:
    """Rewrite the table's cached occupancy from its orders."""
    session.flush()
    table = session.get(Table, table_id)
    status = TableStatus.occupied if active_order_for_table(session, table_id) else TableStatus.empty
    if table is not None and table.status != status:
        table.status = status
        table.updated_at = utcnow()
        session.add(table)
    return status


def recompute_total(session: Session, order: Order) -> int:
    items = get_items(session, order.id)
    order.total_cents = sum(item.quantity * item.price_cents for item in items)
    order.updated_at = utcnow()
    session.add(order)
    return order.total_cents


def get_or_open_order(session: Session, table: Table, staff: StaffMember) -> tuple[Order, bool]:
    """Return the table's open/sent order, creating an open one if there is none."""
    order = active_order_for_table(session, table.id)
    if order is not None:
        return order, False

    order = Order(
        tenant_id=table.tenant_id,
        table_id=table.id,
        order_number=next_order_number(session, table.tenant_id),
        created_by_id=staff.id,
    )
    session.add(order)
    session.flush()
    sync_table_status(session, table.id)
    logger.info(f"Opened order #{order.order_number} on table {table.table_number}")
    return order, True


def _ensure_mutable(order: Order) -> None:
    if order.status == OrderStatus.paid:
        raise OrderClosedError()


def add_item(
    session: Session,
    order: Order,
    product: Product,
    quantity: int,
    note: str | None = None,
    allow_after_sent: bool = True,
) -> OrderItem:
    _ensure_mutable(order)
    if order.status == OrderStatus.sent and not allow_after_sent:
        raise OrderClosedError("Order was already sent to the kitchen")
    if quantity <= 0:
        raise OrderError("Quantity must be at least 1")
    if product.tenant_id != order.tenant_id:
        raise ProductUnavailableError("Product not found")
    if not product.is_active:
        raise ProductUnavailableError(f"{product.name} is not available")

    try:
        consume_stock(product, quantity)
    except InsufficientStockError as e:
        raise ProductUnavailableError(str(e)) from e
    session.add(product)

    item = OrderItem(
        order_id=order.id,
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        price_cents=product.price_cents,
        stock_consumed=quantity if product.stock_enabled else 0,
        note=note,
    )
    session.add(item)
    recompute_total(session, order)
    return item


def update_item(
    session: Session,
    order: Order,
    item: OrderItem,
    quantity: int | None = None,
    note: str | None = None,
) -> OrderItem:
    _ensure_mutable(order)
    if item.is_sent_to_kitchen:
        raise ItemAlreadySentError()

    if quantity is not None and quantity != item.quantity:
        if quantity <= 0:
            raise OrderError("Quantity must be at least 1")
        product = session.get(Product, item.product_id)
        if product is not None:
            delta = quantity - item.quantity
            if delta > 0:
                try:
                    consume_stock(product, delta)
                except InsufficientStockError as e:
                    raise ProductUnavailableError(str(e)) from e
                if product.stock_enabled:
                    item.stock_consumed += delta
            else:
                # Only give back what this line actually took
                returned = min(-delta, item.stock_consumed)
                restore_stock(product, returned)
                item.stock_consumed -= returned
            session.add(product)
        item.quantity = quantity

    if note is not None:
        item.note = note or None

    session.add(item)
    recompute_total(session, order)
    return item


def remove_item(session: Session, order: Order, item: OrderItem) -> Order | None:
    """Delete a line. Returns None when the order was dropped for having no lines left."""
    _ensure_mutable(order)
    if item.is_sent_to_kitchen:
        raise ItemAlreadySentError()

    product = session.get(Product, item.product_id)
    if product is not None:
        restore_stock(product, item.stock_consumed)
        session.add(product)

    session.delete(item)
    recompute_total(session, order)

    if not get_items(session, order.id):
        table_id = order.table_id
        session.delete(order)
        sync_table_status(session, table_id)
        return None
    return order


def send_to_kitchen(session: Session, order: Order) -> list[OrderItem]:
    _ensure_mutable(order)
    pending = [item for item in get_items(session, order.id) if not item.is_sent_to_kitchen]
    if not pending:
        raise NothingToSendError()

    now = utcnow()
    for item in pending:
        item.is_sent_to_kitchen = True
        item.sent_at = now
        session.add(item)

    order.status = OrderStatus.sent
    order.updated_at = now
    session.add(order)
    session.flush()
    return pending


def pay_order(session: Session, order: Order, payment_method: PaymentMethod) -> Order:
    if order.status == OrderStatus.paid:
        raise AlreadyPaidError()
    if payment_method is None:
        raise OrderError("Payment method is required")
    if not get_items(session, order.id):
        raise EmptyOrderError()

    recompute_total(session, order)
    order.status = OrderStatus.paid
    order.payment_method = PaymentMethod(payment_method)
    order.paid_at = utcnow()
    session.add(order)
    sync_table_status(session, order.table_id)
    logger.info(f"Order #{order.order_number} paid by {order.payment_method.value}: {order.total_cents} cents")
    return order


def serialize_item(item: OrderItem) -> dict:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "product_name": item.product_name,
        "quantity": item.quantity,
        "price_cents": item.price_cents,
        "line_total_cents": item.quantity * item.price_cents,
        "is_sent_to_kitchen": item.is_sent_to_kitchen,
        "sent_at": item.sent_at.isoformat() if item.sent_at else None,
        "note": item.note,
    }


def serialize_order(order: Order, items: list[OrderItem], waiter_name: str | None = None) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "table_id": order.table_id,
        "status": order.status.value,
        "total_cents": order.total_cents,
        "payment_method": order.payment_method.value if order.payment_method else None,
        "created_by_id": order.created_by_id,
        "waiter_name": waiter_name,
        "created_at": order.created_at.isoformat(),
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "has_unsent_items": any(not item.is_sent_to_kitchen for item in items),
        "items": [serialize_item(item) for item in items],
    }
