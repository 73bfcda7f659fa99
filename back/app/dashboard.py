"""Table dashboard snapshots: every table with derived occupancy and its current order."""
from sqlmodel import Session, select

from .models import ACTIVE_ORDER_STATUSES, Order, OrderItem, StaffMember, Table, TableStatus, utcnow
from .order_service import serialize_order


def table_summary(table: Table, order: Order | None, items: list[OrderItem], waiter_name: str | None = None) -> dict:
    # Occupancy comes from the order set; the stored flag is only a cache
    status = TableStatus.occupied if order is not None else TableStatus.empty
    return {
        "id": table.id,
        "table_number": table.table_number,
        "status": status.value,
        "order": serialize_order(order, items, waiter_name) if order is not None else None,
    }


def build_snapshot(session: Session, tenant_id: int, table_id: int | None = None) -> dict:
    table_query = select(Table).where(Table.tenant_id == tenant_id)
    if table_id is not None:
        table_query = table_query.where(Table.id == table_id)
    tables = session.exec(table_query.order_by(Table.table_number)).all()

    table_ids = [t.id for t in tables]
    orders_by_table: dict[int, Order] = {}
    items_by_order: dict[int, list[OrderItem]] = {}
    waiter_names: dict[int, str] = {}

    if table_ids:
        orders = session.exec(
            select(Order)
            .where(
                Order.tenant_id == tenant_id,
                Order.table_id.in_(table_ids),
                Order.status.in_(ACTIVE_ORDER_STATUSES),
            )
            .order_by(Order.created_at)
        ).all()
        for order in orders:
            orders_by_table.setdefault(order.table_id, order)

        order_ids = [o.id for o in orders_by_table.values()]
        if order_ids:
            items = session.exec(
                select(OrderItem)
                .where(OrderItem.order_id.in_(order_ids))
                .order_by(OrderItem.created_at, OrderItem.id)
            ).all()
            for item in items:
                items_by_order.setdefault(item.order_id, []).append(item)

            staff_ids = {o.created_by_id for o in orders_by_table.values()}
            for staff in session.exec(select(StaffMember).where(StaffMember.id.in_(staff_ids))).all():
                waiter_names[staff.id] = staff.name

    summaries = []
    for table in tables:
        order = orders_by_table.get(table.id)
        summaries.append(
            table_summary(
                table,
                order,
                items_by_order.get(order.id, []) if order else [],
                waiter_names.get(order.created_by_id) if order else None,
            )
        )

    return {
        "generated_at": utcnow().isoformat(),
        "tables": summaries,
    }
