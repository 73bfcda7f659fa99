import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from . import models, order_service
from .dashboard import build_snapshot
from .models import Product, Table
from .realtime import ChangeNotifier, change_event, get_notifier
from .settings import settings
from .tenancy import TenantScope, get_waiter_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/waiter")

WaiterScope = Annotated[TenantScope, Depends(get_waiter_scope)]
Notifier = Annotated[ChangeNotifier, Depends(get_notifier)]


def _order_response(scope: TenantScope, order: models.Order | None, table_id: int) -> dict:
    if order is None:
        return {"table_id": table_id, "order": None}
    items = order_service.get_items(scope.session, order.id)
    return {"table_id": table_id, "order": order_service.serialize_order(order, items)}


@router.get("/menu")
def get_menu(scope: WaiterScope) -> list[Product]:
    """Products a waiter can add: active ones only."""
    return scope.session.exec(
        scope.select(Product).where(Product.is_active == True).order_by(Product.name)  # noqa: E712
    ).all()


@router.get("/tables")
def list_tables(scope: WaiterScope) -> dict:
    return build_snapshot(scope.session, scope.tenant_id)


@router.get("/tables/{table_id}")
def get_table(table_id: int, scope: WaiterScope) -> dict:
    table = scope.get(Table, table_id)
    return build_snapshot(scope.session, scope.tenant_id, table_id=table.id)["tables"][0]


@router.post("/tables/{table_id}/items")
def add_order_item(
    table_id: int,
    item_data: models.OrderItemCreate,
    scope: WaiterScope,
    notifier: Notifier,
) -> dict:
    """Add a line to the table's current order, opening one if the table is free."""
    table = scope.get(Table, table_id)
    product = scope.get(Product, item_data.product_id)

    order, created = order_service.get_or_open_order(scope.session, table, scope.staff)
    item = order_service.add_item(
        scope.session,
        order,
        product,
        item_data.quantity,
        item_data.note,
        allow_after_sent=settings.allow_items_after_sent,
    )
    scope.session.commit()
    scope.session.refresh(order)

    if created:
        notifier.publish(scope.tenant_id, change_event("order", "created", order.id, scope.tenant_id, table.id))
    notifier.publish(scope.tenant_id, change_event("order_item", "created", item.id, scope.tenant_id, table.id))
    return _order_response(scope, order, table.id)


@router.put("/orders/{order_id}/items/{item_id}")
def update_order_item(
    order_id: int,
    item_id: int,
    item_update: models.OrderItemUpdate,
    scope: WaiterScope,
    notifier: Notifier,
) -> dict:
    order, item = scope.get_item(order_id, item_id)
    order_service.update_item(scope.session, order, item, item_update.quantity, item_update.note)
    scope.session.commit()
    scope.session.refresh(order)

    notifier.publish(scope.tenant_id, change_event("order_item", "updated", item.id, scope.tenant_id, order.table_id))
    return _order_response(scope, order, order.table_id)


@router.delete("/orders/{order_id}/items/{item_id}")
def remove_order_item(
    order_id: int,
    item_id: int,
    scope: WaiterScope,
    notifier: Notifier,
) -> dict:
    order, item = scope.get_item(order_id, item_id)
    table_id = order.table_id
    remaining = order_service.remove_item(scope.session, order, item)
    scope.session.commit()
    if remaining is not None:
        scope.session.refresh(remaining)

    notifier.publish(scope.tenant_id, change_event("order_item", "deleted", item_id, scope.tenant_id, table_id))
    if remaining is None:
        notifier.publish(scope.tenant_id, change_event("order", "deleted", order_id, scope.tenant_id, table_id))
    return _order_response(scope, remaining, table_id)


@router.post("/orders/{order_id}/send")
def send_order_to_kitchen(
    order_id: int,
    scope: WaiterScope,
    notifier: Notifier,
) -> dict:
    order = scope.get_order(order_id)
    sent = order_service.send_to_kitchen(scope.session, order)
    scope.session.commit()
    scope.session.refresh(order)

    logger.info(f"Order #{order.order_number}: {len(sent)} items sent to kitchen")
    notifier.publish(scope.tenant_id, change_event("order", "sent", order.id, scope.tenant_id, order.table_id))
    response = _order_response(scope, order, order.table_id)
    response["sent_item_ids"] = [item.id for item in sent]
    return response
