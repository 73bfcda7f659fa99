import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from . import models, order_service, reports, stock
from .dashboard import build_snapshot
from .identity import IdentityProvider
from .models import Order, OrderItem, OrderStatus, Product, StaffMember, StaffRole, Table, Tenant
from .realtime import ChangeNotifier, change_event, get_notifier
from .security import get_identity_provider
from .settings import settings
from .tenancy import TenantScope, get_admin_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")

AdminScope = Annotated[TenantScope, Depends(get_admin_scope)]
Notifier = Annotated[ChangeNotifier, Depends(get_notifier)]


def product_to_dict(product: Product) -> dict:
    data = product.model_dump()
    data["stock_level"] = stock.stock_level(product, settings.low_stock_threshold)
    return data


# ============ SETTINGS ============

@router.get("/settings")
def get_settings(scope: AdminScope) -> dict:
    tenant = scope.session.get(Tenant, scope.tenant_id)
    return {
        "code": tenant.code,
        "name": tenant.name,
        "iban": tenant.iban,
    }


@router.put("/settings")
def update_settings(update: models.TenantUpdate, scope: AdminScope) -> dict:
    """Update restaurant name and IBAN. The restaurant code cannot change."""
    tenant = scope.session.get(Tenant, scope.tenant_id)
    if update.name is not None:
        if not update.name.strip():
            raise HTTPException(status_code=400, detail="Restaurant name cannot be empty")
        tenant.name = update.name.strip()
    if update.iban is not None:
        tenant.iban = update.iban.strip() or None
    tenant.updated_at = models.utcnow()
    scope.session.add(tenant)
    scope.session.commit()
    scope.session.refresh(tenant)
    return {"code": tenant.code, "name": tenant.name, "iban": tenant.iban}


# ============ PRODUCTS ============

@router.get("/products")
def list_products(scope: AdminScope) -> list[dict]:
    products = scope.session.exec(scope.select(Product).order_by(Product.name)).all()
    return [product_to_dict(p) for p in products]


@router.post("/products")
def create_product(product_data: models.ProductCreate, scope: AdminScope) -> dict:
    if not product_data.name.strip():
        raise HTTPException(status_code=400, detail="Product name is required")
    product = Product(
        name=product_data.name.strip(),
        price_cents=product_data.price_cents,
        is_active=product_data.is_active,
    )
    scope.add(product)
    scope.session.commit()
    scope.session.refresh(product)
    return product_to_dict(product)


@router.put("/products/{product_id}")
def update_product(product_id: int, product_update: models.ProductUpdate, scope: AdminScope) -> dict:
    product = scope.get(Product, product_id)

    if product_update.name is not None:
        if not product_update.name.strip():
            raise HTTPException(status_code=400, detail="Product name is required")
        product.name = product_update.name.strip()
    # Lines already ordered keep the price they were added with
    if product_update.price_cents is not None:
        product.price_cents = product_update.price_cents
    if product_update.is_active is not None and product_update.is_active != product.is_active:
        stock.set_manual_active(product, product_update.is_active)
    stock.apply_stock_policy(product)

    scope.session.add(product)
    scope.session.commit()
    scope.session.refresh(product)
    return product_to_dict(product)


@router.post("/products/{product_id}/toggle-active")
def toggle_product_active(product_id: int, scope: AdminScope) -> dict:
    product = scope.get(Product, product_id)
    stock.set_manual_active(product, not product.is_active)
    scope.session.add(product)
    scope.session.commit()
    scope.session.refresh(product)
    return product_to_dict(product)


@router.delete("/products/{product_id}")
def delete_product(product_id: int, scope: AdminScope) -> dict:
    product = scope.get(Product, product_id)
    in_use = scope.session.exec(
        select(OrderItem).where(OrderItem.product_id == product.id)
    ).first()
    if in_use:
        raise HTTPException(
            status_code=409,
            detail="Product appears on orders and cannot be deleted; deactivate it instead",
        )
    scope.session.delete(product)
    scope.session.commit()
    return {"status": "deleted", "id": product_id}


# ============ STOCK ============

@router.get("/stock")
def list_stock(scope: AdminScope) -> dict:
    products = [product_to_dict(p) for p in scope.session.exec(scope.select(Product).order_by(Product.name)).all()]
    return {
        "products": products,
        "low_stock": [p for p in products if p["stock_level"] == "low"],
        "out_of_stock": [p for p in products if p["stock_level"] == "out_of_stock"],
        "low_stock_threshold": settings.low_stock_threshold,
    }


@router.put("/products/{product_id}/stock")
def update_product_stock(product_id: int, stock_update: models.StockUpdate, scope: AdminScope) -> dict:
    product = scope.get(Product, product_id)
    stock.update_stock(product, stock_update.stock_quantity, stock_update.stock_enabled)
    scope.session.add(product)
    scope.session.commit()
    scope.session.refresh(product)
    return product_to_dict(product)


@router.post("/products/{product_id}/toggle-stock")
def toggle_product_stock(product_id: int, scope: AdminScope) -> dict:
    product = scope.get(Product, product_id)
    stock.update_stock(product, product.stock_quantity, not product.stock_enabled)
    scope.session.add(product)
    scope.session.commit()
    scope.session.refresh(product)
    return product_to_dict(product)


# ============ TABLES ============

@router.get("/tables")
def list_tables(scope: AdminScope) -> list[Table]:
    return scope.session.exec(scope.select(Table).order_by(Table.table_number)).all()


@router.get("/tables/status")
def list_tables_with_status(scope: AdminScope) -> dict:
    """List tables with occupancy derived from open/sent orders."""
    return build_snapshot(scope.session, scope.tenant_id)


@router.post("/tables")
def create_table(table_data: models.TableCreate, scope: AdminScope, notifier: Notifier) -> Table:
    table = Table(table_number=table_data.table_number)
    scope.add(table)
    try:
        scope.session.commit()
    except IntegrityError:
        scope.session.rollback()
        raise HTTPException(status_code=409, detail="Table number already exists")
    scope.session.refresh(table)
    notifier.publish(scope.tenant_id, change_event("table", "created", table.id, scope.tenant_id, table.id))
    return table


@router.get("/tables/{table_id}")
def get_table_status(table_id: int, scope: AdminScope) -> dict:
    table = scope.get(Table, table_id)
    return build_snapshot(scope.session, scope.tenant_id, table_id=table.id)["tables"][0]


@router.get("/tables/{table_id}/orders")
def list_table_orders(table_id: int, scope: AdminScope) -> list[dict]:
    """Every order of a table, newest first, paid ones included."""
    table = scope.get(Table, table_id)
    orders = scope.session.exec(
        scope.select(Order).where(Order.table_id == table.id).order_by(Order.created_at.desc(), Order.id.desc())
    ).all()
    return [_order_with_waiter(scope, order) for order in orders]


@router.delete("/tables/{table_id}")
def delete_table(table_id: int, scope: AdminScope, notifier: Notifier) -> dict:
    table = scope.get(Table, table_id)
    if order_service.active_order_for_table(scope.session, table.id):
        raise HTTPException(status_code=409, detail="Table has an unpaid order")
    for order in scope.session.exec(select(Order).where(Order.table_id == table.id)).all():
        scope.session.delete(order)
    scope.session.flush()
    scope.session.delete(table)
    scope.session.commit()
    notifier.publish(scope.tenant_id, change_event("table", "deleted", table_id, scope.tenant_id, table_id))
    return {"status": "deleted", "id": table_id}


# ============ ORDERS ============

def _order_with_waiter(scope: TenantScope, order: Order) -> dict:
    waiter = scope.session.get(StaffMember, order.created_by_id)
    items = order_service.get_items(scope.session, order.id)
    data = order_service.serialize_order(order, items, waiter.name if waiter else None)
    table = scope.session.get(Table, order.table_id)
    data["table_number"] = table.table_number if table else None
    return data


@router.get("/orders")
def list_orders(
    scope: AdminScope,
    status: OrderStatus | None = Query(None, description="Only orders in this status"),
) -> list[dict]:
    query = scope.select(Order)
    if status is not None:
        query = query.where(Order.status == status)
    orders = scope.session.exec(query.order_by(Order.created_at.desc(), Order.id.desc())).all()
    return [_order_with_waiter(scope, order) for order in orders]


@router.get("/orders/daily-total")
def get_daily_total(scope: AdminScope) -> dict:
    return {"total_cents": reports.daily_total(scope.session, scope.tenant_id)}


@router.get("/orders/{order_id}")
def get_order(order_id: int, scope: AdminScope) -> dict:
    return _order_with_waiter(scope, scope.get_order(order_id))


@router.put("/orders/{order_id}/mark-paid")
def mark_order_paid(
    order_id: int,
    payment_data: models.OrderMarkPaid,
    scope: AdminScope,
    notifier: Notifier,
) -> dict:
    """Record payment (cash, credit card or bank transfer) for an order."""
    order = scope.get_order(order_id)
    order_service.pay_order(scope.session, order, payment_data.payment_method)
    scope.session.commit()
    scope.session.refresh(order)

    notifier.publish(scope.tenant_id, change_event("order", "paid", order.id, scope.tenant_id, order.table_id))
    return {
        "status": order.status.value,
        "order_id": order.id,
        "payment_method": order.payment_method.value,
        "paid_at": order.paid_at.isoformat(),
        "total_cents": order.total_cents,
    }


# ============ REPORTS ============

@router.get("/reports")
def get_report(
    scope: AdminScope,
    report_range: reports.ReportRange = Query(reports.ReportRange.today, alias="range"),
) -> dict:
    return reports.revenue_report(scope.session, scope.tenant_id, report_range)


# ============ WAITERS ============

@router.get("/waiters", response_model=list[models.StaffRead])
def list_waiters(scope: AdminScope):
    return scope.session.exec(
        scope.select(StaffMember).where(StaffMember.role == StaffRole.waiter).order_by(StaffMember.name)
    ).all()


@router.delete("/waiters/{staff_id}")
def delete_waiter(
    staff_id: int,
    scope: AdminScope,
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> dict:
    waiter = scope.get(StaffMember, staff_id)
    if waiter.role != StaffRole.waiter:
        raise HTTPException(status_code=400, detail="Only waiters can be removed here")
    has_orders = scope.session.exec(select(Order).where(Order.created_by_id == waiter.id)).first()
    if has_orders:
        raise HTTPException(status_code=409, detail="Waiter has orders on record and cannot be removed")
    scope.session.delete(waiter)
    scope.session.commit()
    identity.delete_account(staff_id)
    logger.info(f"Waiter {staff_id} removed from tenant {scope.tenant_id}")
    return {"status": "deleted", "id": staff_id}
