"""
Rows of another restaurant are indistinguishable from missing rows.

Every admin and waiter endpoint addressing a table, product, order or item
by id must answer 404 for ids that belong to a different tenant, and must
leave those rows untouched.
"""
import pytest


@pytest.fixture
def foreign(other_restaurant):
    """A table with an order and a product owned by REST002."""
    product = other_restaurant.add_product("Baklava", 8000)
    table = other_restaurant.add_table(7)
    waiter = other_restaurant.add_waiter("Zeynep")
    r = waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": product["id"], "quantity": 1})
    assert r.status_code == 200
    order = r.json()["order"]
    return {
        "restaurant": other_restaurant,
        "product": product,
        "table": table,
        "order": order,
        "item": order["items"][0],
    }


ADMIN_REQUESTS = [
    ("get", "/admin/tables/{table}", None),
    ("get", "/admin/tables/{table}/orders", None),
    ("delete", "/admin/tables/{table}", None),
    ("put", "/admin/products/{product}", {"price_cents": 1}),
    ("post", "/admin/products/{product}/toggle-active", None),
    ("delete", "/admin/products/{product}", None),
    ("put", "/admin/products/{product}/stock", {"stock_quantity": 0, "stock_enabled": True}),
    ("get", "/admin/orders/{order}", None),
    ("put", "/admin/orders/{order}/mark-paid", {"payment_method": "cash"}),
]

WAITER_REQUESTS = [
    ("get", "/waiter/tables/{table}", None),
    ("post", "/waiter/tables/{table}/items", {"product_id": "{own_product}", "quantity": 1}),
    ("put", "/waiter/orders/{order}/items/{item}", {"quantity": 4}),
    ("delete", "/waiter/orders/{order}/items/{item}", None),
    ("post", "/waiter/orders/{order}/send", None),
]


def _ids(foreign, own_product=None):
    return {
        "table": foreign["table"]["id"],
        "product": foreign["product"]["id"],
        "order": foreign["order"]["id"],
        "item": foreign["item"]["id"],
        "own_product": own_product,
    }


def _call(client, method, path, body, ids):
    if isinstance(body, dict):
        body = {k: (ids[v[1:-1]] if isinstance(v, str) and v.startswith("{") else v) for k, v in body.items()}
    kwargs = {"json": body} if body is not None else {}
    return getattr(client, method)(path.format(**ids), **kwargs)


@pytest.mark.parametrize("method,path,body", ADMIN_REQUESTS)
def test_admin_cannot_reach_other_tenant(restaurant, foreign, method, path, body):
    r = _call(restaurant.admin, method, path, body, _ids(foreign))
    assert r.status_code == 404


@pytest.mark.parametrize("method,path,body", WAITER_REQUESTS)
def test_waiter_cannot_reach_other_tenant(restaurant, waiter, foreign, method, path, body):
    own_product = restaurant.add_product("Coffee", 5000)
    r = _call(waiter, method, path, body, _ids(foreign, own_product["id"]))
    assert r.status_code == 404


def test_waiter_cannot_order_other_tenants_product(restaurant, waiter, foreign):
    table = restaurant.add_table(1)
    r = waiter.post(f"/waiter/tables/{table['id']}/items", json={
        "product_id": foreign["product"]["id"],
        "quantity": 1,
    })
    assert r.status_code == 404
    assert waiter.get(f"/waiter/tables/{table['id']}").json()["status"] == "empty"


def test_foreign_rows_untouched_after_attempts(restaurant, waiter, foreign):
    ids = _ids(foreign)
    for method, path, body in ADMIN_REQUESTS:
        _call(restaurant.admin, method, path, body, ids)

    owner = foreign["restaurant"].admin
    order = owner.get(f"/admin/orders/{ids['order']}").json()
    assert order["status"] == "open"
    assert order["total_cents"] == 8000
    products = owner.get("/admin/products").json()
    assert [(p["name"], p["price_cents"], p["is_active"]) for p in products] == [("Baklava", 8000, True)]
    assert owner.get(f"/admin/tables/{ids['table']}").json()["status"] == "occupied"


def test_listings_only_show_own_rows(restaurant, waiter, foreign):
    restaurant.add_product("Coffee", 5000)
    restaurant.add_table(1)

    assert [p["name"] for p in restaurant.admin.get("/admin/products").json()] == ["Coffee"]
    assert [t["table_number"] for t in restaurant.admin.get("/admin/tables").json()] == [1]
    assert restaurant.admin.get("/admin/orders").json() == []
    assert [w["name"] for w in restaurant.admin.get("/admin/waiters").json()] == ["Ali"]
    assert [t["table_number"] for t in waiter.get("/waiter/tables").json()["tables"]] == [1]
    assert [p["name"] for p in waiter.get("/waiter/menu").json()] == ["Coffee"]


def test_same_table_number_allowed_across_tenants(restaurant, foreign):
    r = restaurant.admin.post("/admin/tables", json={"table_number": 7})
    assert r.status_code == 200

    r = restaurant.admin.post("/admin/tables", json={"table_number": 7})
    assert r.status_code == 409
