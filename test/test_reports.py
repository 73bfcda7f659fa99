from datetime import datetime, timedelta, timezone

import pytest

from app.models import Order, OrderStatus, PaymentMethod
from app.reports import ReportRange, daily_total, range_bounds, revenue_report


def test_range_bounds():
    now = datetime(2026, 3, 15, 14, 30, tzinfo=timezone.utc)

    start, end = range_bounds(ReportRange.today, now)
    assert start == datetime(2026, 3, 15, tzinfo=timezone.utc)
    assert end.date() == now.date()
    assert end > now

    start, _ = range_bounds(ReportRange.week, now)
    assert start == datetime(2026, 3, 8, tzinfo=timezone.utc)

    start, _ = range_bounds(ReportRange.month, now)
    assert start == datetime(2026, 2, 13, tzinfo=timezone.utc)


@pytest.fixture
def serve(restaurant, waiter):
    """Serve and pay one order on a table; returns the payment response."""
    coffee = restaurant.add_product("Coffee", 5000)

    def _serve(table, quantity, method="cash"):
        order = waiter.post(f"/waiter/tables/{table['id']}/items", json={
            "product_id": coffee["id"],
            "quantity": quantity,
        }).json()["order"]
        r = restaurant.admin.put(f"/admin/orders/{order['id']}/mark-paid", json={"payment_method": method})
        assert r.status_code == 200
        return r.json()

    return _serve


def test_paid_order_counts_towards_today(restaurant, waiter, serve):
    table = restaurant.add_table(3)
    assert restaurant.admin.get("/admin/orders/daily-total").json() == {"total_cents": 0}

    paid = serve(table, 2)
    assert paid["status"] == "paid"

    assert restaurant.admin.get("/admin/orders/daily-total").json() == {"total_cents": 10000}
    report = restaurant.admin.get("/admin/reports", params={"range": "today"}).json()
    assert report["total_revenue_cents"] == 10000
    assert report["order_count"] == 1
    assert report["by_payment_method"] == {"cash": 10000}

    # No other open order: the table is free again
    tables = waiter.get("/waiter/tables").json()["tables"]
    assert [(t["table_number"], t["status"]) for t in tables] == [(3, "empty")]


def test_open_orders_are_not_revenue(restaurant, waiter, serve):
    table = restaurant.add_table(1)
    coffee = restaurant.admin.get("/admin/products").json()[0]
    waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": coffee["id"], "quantity": 3})

    report = restaurant.admin.get("/admin/reports").json()
    assert report["order_count"] == 0
    assert report["total_revenue_cents"] == 0
    assert report["average_order_cents"] == 0


def test_double_payment_not_double_counted(restaurant, serve):
    table = restaurant.add_table(3)
    paid = serve(table, 2)

    r = restaurant.admin.put(f"/admin/orders/{paid['order_id']}/mark-paid", json={"payment_method": "cash"})
    assert r.status_code == 409
    assert r.json()["detail"] == "Order is already paid"

    assert restaurant.admin.get("/admin/orders/daily-total").json()["total_cents"] == 10000
    report = restaurant.admin.get("/admin/reports", params={"range": "week"}).json()
    assert report["order_count"] == 1


def test_report_groups_by_waiter_and_method(restaurant, waiter, serve):
    t1 = restaurant.add_table(1)
    t2 = restaurant.add_table(2)
    serve(t1, 1, "cash")
    serve(t2, 3, "credit_card")
    serve(t1, 2, "credit_card")

    report = restaurant.admin.get("/admin/reports", params={"range": "month"}).json()
    assert report["range"] == "month"
    assert report["order_count"] == 3
    assert report["total_revenue_cents"] == 30000
    assert report["average_order_cents"] == 10000
    assert report["by_payment_method"] == {"cash": 5000, "credit_card": 25000}
    assert report["waiters"] == [{
        "staff_id": waiter.get("/me").json()["id"],
        "name": "Ali",
        "count": 3,
        "revenue_cents": 30000,
    }]


def test_invalid_range_rejected(restaurant):
    r = restaurant.admin.get("/admin/reports", params={"range": "year"})
    assert r.status_code == 422


def test_reports_bucket_by_payment_time(restaurant, waiter, serve, db):
    table = restaurant.add_table(1)
    paid = serve(table, 2)
    now = datetime.now(timezone.utc)

    # Pretend it was paid ten days ago
    order = db.get(Order, paid["order_id"])
    order.paid_at = now - timedelta(days=10)
    db.add(order)
    db.commit()

    assert daily_total(db, restaurant.tenant_id, now) == 0
    assert revenue_report(db, restaurant.tenant_id, ReportRange.week, now)["order_count"] == 0
    month = revenue_report(db, restaurant.tenant_id, ReportRange.month, now)
    assert month["order_count"] == 1
    assert month["total_revenue_cents"] == 10000


def test_reports_are_tenant_scoped(restaurant, other_restaurant, serve, db):
    serve(restaurant.add_table(1), 2)

    report = other_restaurant.admin.get("/admin/reports").json()
    assert report["order_count"] == 0
    assert revenue_report(db, restaurant.tenant_id, ReportRange.today)["order_count"] == 1


def test_paid_order_fields(restaurant, serve, db):
    paid = serve(restaurant.add_table(1), 1, "bank_transfer")
    order = db.get(Order, paid["order_id"])
    assert order.status == OrderStatus.paid
    assert order.payment_method == PaymentMethod.bank_transfer
    assert order.paid_at is not None
