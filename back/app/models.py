from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StaffRole(str, Enum):
    admin = "admin"
    waiter = "waiter"


class TableStatus(str, Enum):
    empty = "empty"
    occupied = "occupied"


class OrderStatus(str, Enum):
    open = "open"
    sent = "sent"  # Visible to the kitchen; more items may still be added
    paid = "paid"  # Terminal


class PaymentMethod(str, Enum):
    cash = "cash"
    credit_card = "credit_card"
    bank_transfer = "bank_transfer"


ACTIVE_ORDER_STATUSES = (OrderStatus.open, OrderStatus.sent)


class Tenant(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)  # Canonical uppercase form, immutable
    name: str
    iban: str | None = None  # Shown to guests paying by bank transfer
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    staff: list["StaffMember"] = Relationship(back_populates="tenant")


class Credential(SQLModel, table=True):
    """Account store of the local identity provider. Not a domain entity."""
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    token_version: int = Field(default=0)  # Bumped on sign-out to revoke issued sessions
    created_at: datetime = Field(default_factory=utcnow)


class StaffMember(SQLModel, table=True):
    # Same id as the principal's Credential
    id: int = Field(primary_key=True, foreign_key="credential.id")
    name: str
    role: StaffRole = Field(default=StaffRole.waiter)
    tenant_id: int = Field(foreign_key="tenant.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    tenant: Tenant | None = Relationship(back_populates="staff")


class TenantMixin(SQLModel):
    tenant_id: int = Field(foreign_key="tenant.id", index=True)


class Table(TenantMixin, table=True):
    __table_args__ = (UniqueConstraint("tenant_id", "table_number", name="uq_table_tenant_number"),)

    id: int | None = Field(default=None, primary_key=True)
    table_number: int
    # Cache of "has an open or sent order"; rewritten by the order service
    status: TableStatus = Field(default=TableStatus.empty)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Product(TenantMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    price_cents: int = Field(ge=0)
    is_active: bool = Field(default=True)
    stock_enabled: bool = Field(default=False)
    stock_quantity: int = Field(default=0, ge=0)  # Only meaningful when stock_enabled
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Order(TenantMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    table_id: int = Field(foreign_key="table.id", index=True)
    order_number: int | None = None  # Display only
    status: OrderStatus = Field(default=OrderStatus.open, index=True)
    total_cents: int = Field(default=0)  # Denormalized, recomputed on every item mutation
    payment_method: PaymentMethod | None = None
    created_by_id: int = Field(foreign_key="staffmember.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    paid_at: datetime | None = None

    items: list["OrderItem"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class OrderItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True, ondelete="CASCADE")
    product_id: int = Field(foreign_key="product.id")
    product_name: str  # Snapshot of product name at order time
    quantity: int
    price_cents: int  # Snapshot of price at order time
    stock_consumed: int = Field(default=0)  # Units taken from tracked stock for this line
    is_sent_to_kitchen: bool = Field(default=False)
    sent_at: datetime | None = None
    note: str | None = None  # e.g. "no sugar"
    created_at: datetime = Field(default_factory=utcnow)

    order: Order = Relationship(back_populates="items")


# Request/Response Models
class LoginRequest(SQLModel):
    restaurant_code: str
    email: str
    password: str


class RegisterRequest(SQLModel):
    """Body of POST /register; `type` selects the flow."""
    type: str
    # type == "restaurant"
    restaurant_code: str | None = None
    restaurant_name: str | None = None
    restaurant_iban: str | None = None
    admin_email: str | None = None
    admin_password: str | None = None
    admin_name: str | None = None
    # type == "waiter"
    waiter_email: str | None = None
    waiter_password: str | None = None
    waiter_name: str | None = None


class StaffRead(SQLModel):
    id: int
    name: str
    role: StaffRole
    tenant_id: int


class TenantUpdate(SQLModel):
    name: str | None = None
    iban: str | None = None


class ProductCreate(SQLModel):
    name: str
    price_cents: int = Field(ge=0)
    is_active: bool = True


class ProductUpdate(SQLModel):
    name: str | None = None
    price_cents: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class StockUpdate(SQLModel):
    stock_quantity: int = Field(ge=0)
    stock_enabled: bool


class TableCreate(SQLModel):
    table_number: int = Field(gt=0)


class OrderItemCreate(SQLModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)
    note: str | None = None


class OrderItemUpdate(SQLModel):
    quantity: int | None = Field(default=None, gt=0)
    note: str | None = None


class OrderMarkPaid(SQLModel):
    payment_method: PaymentMethod
