import json

import pytest
import redis

from app.dashboard import build_snapshot
from app.models import Table, TableStatus
from app.realtime import ChangeNotifier, RedisNotifier, change_event, tenant_channel


@pytest.fixture
def coffee(restaurant):
    return restaurant.add_product("Coffee", 5000)


def test_snapshot_lists_tables_in_order(restaurant, waiter, coffee):
    for number in (3, 1, 2):
        restaurant.add_table(number)

    snapshot = waiter.get("/waiter/tables").json()
    assert "generated_at" in snapshot
    assert [t["table_number"] for t in snapshot["tables"]] == [1, 2, 3]
    assert all(t["status"] == "empty" and t["order"] is None for t in snapshot["tables"])


def test_snapshot_carries_current_order(restaurant, waiter, coffee):
    table = restaurant.add_table(1)
    waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": coffee["id"], "quantity": 2})

    entry = restaurant.admin.get("/admin/tables/status").json()["tables"][0]
    assert entry["status"] == "occupied"
    assert entry["order"]["total_cents"] == 10000
    assert entry["order"]["waiter_name"] == "Ali"
    assert entry["order"]["has_unsent_items"] is True


def test_occupancy_derived_from_orders_not_stored_flag(restaurant, waiter, coffee, db):
    table = restaurant.add_table(1)
    waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": coffee["id"]})

    # A stale cached flag does not leak into the dashboard
    stored = db.get(Table, table["id"])
    assert stored.status == TableStatus.occupied
    stored.status = TableStatus.empty
    db.add(stored)
    db.commit()

    snapshot = build_snapshot(db, restaurant.tenant_id)
    assert snapshot["tables"][0]["status"] == "occupied"


def test_targeted_table_fetch(restaurant, waiter, coffee):
    restaurant.add_table(1)
    t2 = restaurant.add_table(2)

    entry = waiter.get(f"/waiter/tables/{t2['id']}").json()
    assert entry["id"] == t2["id"]
    assert entry["table_number"] == 2


def test_mutations_publish_tenant_events(restaurant, waiter, coffee, notifier):
    table = restaurant.add_table(1)
    notifier.events.clear()

    order = waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": coffee["id"]}).json()["order"]
    waiter.post(f"/waiter/orders/{order['id']}/send")
    restaurant.admin.put(f"/admin/orders/{order['id']}/mark-paid", json={"payment_method": "cash"})

    assert {tenant for tenant, _ in notifier.events} == {restaurant.tenant_id}
    assert [(e["entity"], e["action"]) for _, e in notifier.events] == [
        ("order", "created"),
        ("order_item", "created"),
        ("order", "sent"),
        ("order", "paid"),
    ]
    assert all(e["table_id"] == table["id"] for _, e in notifier.events)


def test_table_creation_publishes_event(restaurant, notifier):
    table = restaurant.add_table(9)
    assert notifier.events[-1] == (
        restaurant.tenant_id,
        change_event("table", "created", table["id"], restaurant.tenant_id, table["id"]),
    )


def test_rejected_mutation_publishes_nothing(restaurant, waiter, coffee, notifier):
    table = restaurant.add_table(1)
    notifier.events.clear()

    r = waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": 999})
    assert r.status_code == 404
    assert notifier.events == []


def test_delete_table_with_history(restaurant, waiter, coffee, notifier):
    table = restaurant.add_table(1)
    order = waiter.post(f"/waiter/tables/{table['id']}/items", json={"product_id": coffee["id"]}).json()["order"]

    r = restaurant.admin.delete(f"/admin/tables/{table['id']}")
    assert r.status_code == 409

    restaurant.admin.put(f"/admin/orders/{order['id']}/mark-paid", json={"payment_method": "cash"})
    r = restaurant.admin.delete(f"/admin/tables/{table['id']}")
    assert r.status_code == 200
    assert restaurant.admin.get("/admin/tables").json() == []
    assert notifier.events[-1][1]["action"] == "deleted"


class FakeRedis:
    def __init__(self):
        self.published = []

    def ping(self):
        return True

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))

    def close(self):
        pass


def test_redis_notifier_publishes_on_tenant_channel(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis, "from_url", lambda url: fake)

    notifier = RedisNotifier("redis://example:6379")
    event = change_event("order", "paid", 5, 2, 7)
    notifier.publish(2, event)

    assert fake.published == [(tenant_channel(2), event)]
    assert tenant_channel(2) == "dashboard:tenant:2"


def test_redis_notifier_drops_events_when_unavailable(monkeypatch):
    def unavailable(url):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(redis, "from_url", unavailable)

    notifier = RedisNotifier("redis://nowhere:6379")
    notifier.publish(1, change_event("table", "created", 1, 1, 1))
    notifier.close()


def test_health_endpoints(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/db").json() == {"status": "ok", "database": "connected"}


def test_notifier_interface_is_abstract():
    class Silent(ChangeNotifier):
        pass

    with pytest.raises(TypeError):
        Silent()
