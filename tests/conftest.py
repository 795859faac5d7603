"""Pytest fixtures for the settlement engine tests."""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("PAYOUT_PROVIDER", "manual")
os.environ.setdefault("ENV", "test")

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from config.constants import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER
from database import get_db
from models.order import OrderStatus
from utils.jwt import create_access_token
from utils.order_state import ORDER_FLOW, transition_order
from utils.order_store import create_order, get_order


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    return AsyncMongoMockClient()["marketplace_test"]


@pytest.fixture
def buyer():
    return {"_id": "buyer-1", "role": ROLE_BUYER}


@pytest.fixture
def other_buyer():
    return {"_id": "buyer-2", "role": ROLE_BUYER}


@pytest.fixture
def seller():
    return {"_id": "seller-1", "role": ROLE_SELLER}


@pytest.fixture
def other_seller():
    return {"_id": "seller-2", "role": ROLE_SELLER}


@pytest.fixture
def admin():
    return {"_id": "admin-1", "role": ROLE_ADMIN}


@pytest.fixture
def order_factory(db, buyer, admin):
    """
    Create an order and walk it to ``status`` through the state machine.

    ``lines`` are (seller_id, unit_price, quantity) tuples.
    """

    async def factory(
        *,
        status=OrderStatus.PENDING.value,
        lines=(("seller-1", "100.00", 1),),
        buyer_id=None,
    ):
        order = await create_order(
            db,
            buyer_id=buyer_id or buyer["_id"],
            items=[
                {
                    "product_id": f"product-{n}",
                    "seller_id": seller_id,
                    "product_name": f"Product {n}",
                    "unit_price": price,
                    "quantity": quantity,
                }
                for n, (seller_id, price, quantity) in enumerate(lines)
            ],
            shipping_address={"city": "Berlin", "postal_code": "10115"},
        )

        if status in ORDER_FLOW:
            for step in ORDER_FLOW[1: ORDER_FLOW.index(status) + 1]:
                await transition_order(db, order["_id"], step, admin)
        elif status == OrderStatus.CANCELLED.value:
            await transition_order(db, order["_id"], status, admin, reason="test")

        return await get_order(db, order["_id"])

    return factory


@pytest.fixture
def auth_headers():
    def make(actor: dict) -> dict:
        token = create_access_token(actor["_id"], actor["role"])
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
async def api(db):
    """HTTP client against the app, wired to the in-memory database."""
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
