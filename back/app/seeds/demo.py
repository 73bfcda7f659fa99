"""
Seed a demo restaurant with an admin, a waiter, tables and a few products.

Credentials:
    restaurant code: DEMO
    admin@demo.local / demo1234
    waiter@demo.local / demo1234

Usage:
    python -m app.seeds.demo
"""

from sqlmodel import Session, select

from app.db import build_engine, create_db_and_tables
from app.identity import IdentityError, LocalIdentityProvider
from app.models import Product, StaffMember, StaffRole, Table, Tenant
from app.settings import settings
from app.stock import apply_stock_policy

DEMO_CODE = "DEMO"
DEMO_PASSWORD = "demo1234"

DEMO_STAFF = [
    ("admin@demo.local", "Demo Admin", StaffRole.admin),
    ("waiter@demo.local", "Demo Waiter", StaffRole.waiter),
]

DEMO_PRODUCTS = [
    # name, price_cents, stock tracked, stock quantity
    ("Coffee", 5000, False, 0),
    ("Tea", 3000, False, 0),
    ("Cheesecake", 12000, True, 8),
    ("Lemonade", 4500, True, 0),
]


def seed_demo(session: Session) -> dict:
    tenant = session.exec(select(Tenant).where(Tenant.code == DEMO_CODE)).first()
    if tenant is None:
        tenant = Tenant(code=DEMO_CODE, name="Demo Restaurant", iban="TR00 0000 0000 0000 0000 0000 00")
        session.add(tenant)
        session.commit()
        session.refresh(tenant)
        print(f"  Created restaurant {DEMO_CODE}")

    identity = LocalIdentityProvider(session)
    staff_created = 0
    for email, name, role in DEMO_STAFF:
        try:
            principal = identity.create_account(email, DEMO_PASSWORD)
        except IdentityError:
            print(f"  Account {email} already exists, skipping")
            continue
        session.add(StaffMember(id=principal.id, name=name, role=role, tenant_id=tenant.id))
        session.commit()
        staff_created += 1
        print(f"  Created {role.value} {email}")

    existing_numbers = set(
        session.exec(select(Table.table_number).where(Table.tenant_id == tenant.id)).all()
    )
    tables_created = 0
    for number in range(1, 6):
        if number not in existing_numbers:
            session.add(Table(tenant_id=tenant.id, table_number=number))
            tables_created += 1

    existing_products = set(
        session.exec(select(Product.name).where(Product.tenant_id == tenant.id)).all()
    )
    products_created = 0
    for name, price_cents, stock_enabled, quantity in DEMO_PRODUCTS:
        if name in existing_products:
            continue
        session.add(apply_stock_policy(Product(
            tenant_id=tenant.id,
            name=name,
            price_cents=price_cents,
            stock_enabled=stock_enabled,
            stock_quantity=quantity,
        )))
        products_created += 1

    session.commit()
    return {
        "staff_created": staff_created,
        "tables_created": tables_created,
        "products_created": products_created,
    }


if __name__ == "__main__":
    print("Seeding demo restaurant...")
    engine = build_engine(settings)
    create_db_and_tables(engine)
    with Session(engine) as session:
        result = seed_demo(session)
    print(f"\nComplete!")
    print(f"  Staff created: {result['staff_created']}")
    print(f"  Tables created: {result['tables_created']}")
    print(f"  Products created: {result['products_created']}")
