"""
Tenant isolation policy.

Route handlers never filter by tenant themselves. They receive a
``TenantScope`` bound to the authenticated staff member's tenant and go
through it for every read and write. A row owned by another tenant is
reported exactly like a missing row.
"""
from typing import Annotated, TypeVar

from fastapi import Depends, HTTPException
from sqlmodel import Session, SQLModel, select
from sqlmodel.sql.expression import SelectOfScalar

from .db import get_session
from .models import Order, OrderItem, StaffMember
from .security import require_admin, require_waiter

M = TypeVar("M", bound=SQLModel)

NOT_FOUND_MESSAGES = {
    "Table": "Table not found",
    "Product": "Product not found",
    "Order": "Order not found",
    "OrderItem": "Order item not found",
    "StaffMember": "Staff member not found",
}


class TenantScope:
    def __init__(self, session: Session, staff: StaffMember):
        self.session = session
        self.staff = staff
        self.tenant_id = staff.tenant_id

    def select(self, model: type[M]) -> SelectOfScalar[M]:
        return select(model).where(model.tenant_id == self.tenant_id)

    def find(self, model: type[M], object_id: int) -> M | None:
        obj = self.session.get(model, object_id)
        if obj is None or obj.tenant_id != self.tenant_id:
            return None
        return obj

    def get(self, model: type[M], object_id: int) -> M:
        obj = self.find(model, object_id)
        if obj is None:
            raise HTTPException(
                status_code=404,
                detail=NOT_FOUND_MESSAGES.get(model.__name__, "Not found"),
            )
        return obj

    def get_order(self, order_id: int) -> Order:
        return self.get(Order, order_id)

    def get_item(self, order_id: int, item_id: int) -> tuple[Order, OrderItem]:
        order = self.get_order(order_id)
        item = self.session.get(OrderItem, item_id)
        if item is None or item.order_id != order.id:
            raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGES["OrderItem"])
        return order, item

    def add(self, obj: M) -> M:
        """Bind a new row to this tenant; rows pre-bound elsewhere are refused."""
        current = getattr(obj, "tenant_id", None)
        if current is not None and current != self.tenant_id:
            raise HTTPException(status_code=404, detail="Not found")
        obj.tenant_id = self.tenant_id
        self.session.add(obj)
        return obj


def get_admin_scope(
    staff: Annotated[StaffMember, Depends(require_admin)],
    session: Annotated[Session, Depends(get_session)],
) -> TenantScope:
    return TenantScope(session, staff)


def get_waiter_scope(
    staff: Annotated[StaffMember, Depends(require_waiter)],
    session: Annotated[Session, Depends(get_session)],
) -> TenantScope:
    return TenantScope(session, staff)
