"""
Shared fixtures.

Tests run against in-memory SQLite and the in-process change feed, so no
Postgres or Redis is needed. The environment is set before any menuboard
module is imported because settings and the engine are built at import time.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["FEED_RECONNECT_DELAY"] = "0.05"

from decimal import Decimal  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from menuboard import models  # noqa: E402
from menuboard.changes import LocalChangeFeed  # noqa: E402
from menuboard.db import build_engine, create_db_and_tables  # noqa: E402
from menuboard.errors import StoreUnavailableError  # noqa: E402
from menuboard.store import OrderStore  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def changes():
    return LocalChangeFeed()


@pytest.fixture
def store(engine, changes):
    return OrderStore(engine, changes)


@pytest.fixture
def restaurant(engine):
    """A restaurant with two menu items: Borscht (450) and Pelmeni (890)."""
    with Session(engine) as session:
        owner = models.User(email=f"owner-{uuid4().hex[:8]}@example.com", hashed_password="x")
        session.add(owner)
        session.commit()
        session.refresh(owner)

        restaurant = models.Restaurant(owner_id=owner.id, name="Pelmennaya")
        session.add(restaurant)
        session.commit()
        session.refresh(restaurant)

        session.add(models.MenuItem(id="borscht", restaurant_id=restaurant.id, name="Borscht", price=Decimal("450")))
        session.add(models.MenuItem(id="pelmeni", restaurant_id=restaurant.id, name="Pelmeni", price=Decimal("890")))
        session.commit()
        return restaurant.id


def make_order(restaurant_id: str, status=models.OrderStatus.new, items=None, **fields) -> models.Order:
    return models.Order(
        restaurant_id=restaurant_id,
        status=status,
        items=items or [{"menuItemId": "borscht", "name": "Borscht", "price": 450, "qty": 1}],
        **fields,
    )


class FailingStore:
    """Wraps a real store and fails the writes named in `fail_on`."""

    def __init__(self, store: OrderStore, fail_on=("insert", "update", "delete")):
        self._store = store
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    async def insert(self, order):
        self.calls.append("insert")
        if "insert" in self.fail_on:
            raise StoreUnavailableError("connection refused")
        return await self._store.insert(order)

    async def update(self, order_id, changes):
        self.calls.append("update")
        if "update" in self.fail_on:
            raise StoreUnavailableError("connection refused")
        return await self._store.update(order_id, changes)

    async def delete(self, order_id):
        self.calls.append("delete")
        if "delete" in self.fail_on:
            raise StoreUnavailableError("connection refused")
        return await self._store.delete(order_id)

    def __getattr__(self, name):
        return getattr(self._store, name)


# ============ API ============

@pytest.fixture
def client():
    from menuboard.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def owner(client):
    """Registered owner with one restaurant; returns (headers, restaurant, token)."""
    email = f"owner-{uuid4().hex[:8]}@example.com"
    response = client.post("/register", json={"email": email, "password": "foo1234"})
    assert response.status_code == 201

    response = client.post("/token", data={"username": email, "password": "foo1234"})
    assert response.status_code == 200
    token = response.json()["access_token"]
    # Use the header only so several owners can share one client
    client.cookies.clear()
    headers = {"Authorization": f"Bearer {token}"}

    response = client.post("/restaurants", json={"name": "Pelmennaya"}, headers=headers)
    assert response.status_code == 201
    return headers, response.json(), token
