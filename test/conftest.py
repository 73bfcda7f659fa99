import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app import models  # noqa: F401
from app.db import _enable_sqlite_foreign_keys, get_session
from app.main import app
from app.realtime import ChangeNotifier, get_notifier

ADMIN_PASSWORD = "secret123"
WAITER_PASSWORD = "waiter123"


class RecordingNotifier(ChangeNotifier):
    def __init__(self):
        self.events: list[tuple[int, dict]] = []

    def publish(self, tenant_id: int, event: dict) -> None:
        self.events.append((tenant_id, event))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_foreign_keys(engine)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_client(engine, notifier):
    """Factory for clients with their own cookie jar (one per logged-in person)."""
    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_notifier] = lambda: notifier

    def _make() -> TestClient:
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client):
    return make_client()


def register_restaurant(client, code, admin_email, restaurant_name=None, admin_name="Admin", password=ADMIN_PASSWORD):
    return client.post("/register", json={
        "type": "restaurant",
        "restaurant_code": code,
        "restaurant_name": restaurant_name or f"Restaurant {code}",
        "restaurant_iban": "TR12 3456",
        "admin_email": admin_email,
        "admin_password": password,
        "admin_name": admin_name,
    })


def login(client, code, email, password):
    return client.post("/login", json={
        "restaurant_code": code,
        "email": email,
        "password": password,
    })


class Restaurant:
    """A registered restaurant with a logged-in admin and helpers to build fixtures through the API."""

    def __init__(self, make_client, code: str):
        self.make_client = make_client
        self.code = code
        self.admin_email = f"admin@{code.lower()}.test"

        self.admin = make_client()
        r = register_restaurant(self.admin, code, self.admin_email)
        assert r.status_code == 200, r.text
        r = login(self.admin, code, self.admin_email, ADMIN_PASSWORD)
        assert r.status_code == 200, r.text
        self.tenant_id = self.admin.get("/me").json()["tenant_id"]

    def add_waiter(self, name: str = "Ali"):
        email = f"{name.lower()}@{self.code.lower()}.test"
        r = self.admin.post("/register", json={
            "type": "waiter",
            "waiter_email": email,
            "waiter_password": WAITER_PASSWORD,
            "waiter_name": name,
        })
        assert r.status_code == 200, r.text
        waiter = self.make_client()
        r = login(waiter, self.code, email, WAITER_PASSWORD)
        assert r.status_code == 200, r.text
        waiter.email = email
        return waiter

    def add_product(self, name: str = "Coffee", price_cents: int = 5000, **kwargs) -> dict:
        r = self.admin.post("/admin/products", json={"name": name, "price_cents": price_cents, **kwargs})
        assert r.status_code == 200, r.text
        return r.json()

    def add_table(self, number: int) -> dict:
        r = self.admin.post("/admin/tables", json={"table_number": number})
        assert r.status_code == 200, r.text
        return r.json()


@pytest.fixture
def restaurant(make_client):
    return Restaurant(make_client, "REST001")


@pytest.fixture
def other_restaurant(make_client):
    return Restaurant(make_client, "REST002")


@pytest.fixture
def waiter(restaurant):
    return restaurant.add_waiter()
