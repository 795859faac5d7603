"""
Order store adapter: the only place that reads or writes ``orders`` and
``order_items`` documents.
"""

from datetime import datetime

from bson import ObjectId

from config.constants import DEFAULT_LIST_LIMIT
from config.env import CURRENCY
from models.order import OrderStatus, PaymentStatus
from utils.errors import InvalidState
from utils.guards import parse_object_id
from utils.mongo import find_by_id, guarded_update, store_guard
from utils.money import to_cents


# ==============================
# Create (checkout hands orders in)
# ==============================

async def create_order(
    db,
    *,
    buyer_id: str,
    items: list[dict],
    shipping_address: dict,
    currency: str = CURRENCY,
) -> dict:
    """
    Persist an order and its line items. The total is computed once from the
    frozen item prices and never recomputed afterwards.

    ``items``: dicts with product_id, seller_id, product_name, product_image,
    unit_price (Decimal/str) and quantity.
    """
    if not items:
        raise InvalidState("Order needs at least one item", precondition="has_items")

    now = datetime.utcnow()
    order_id = ObjectId()

    item_docs = []
    for item in items:
        quantity = int(item["quantity"])
        unit_price_cents = to_cents(item["unit_price"])
        if quantity <= 0 or unit_price_cents <= 0:
            raise InvalidState("Item price and quantity must be positive", precondition="positive_item")
        item_docs.append({
            "order_id": order_id,
            "product_id": str(item["product_id"]),
            "seller_id": str(item["seller_id"]),
            "product_name": item["product_name"],
            "product_image": item.get("product_image"),
            "unit_price_cents": unit_price_cents,
            "quantity": quantity,
            "created_at": now,
        })

    order = {
        "_id": order_id,
        "buyer_id": str(buyer_id),
        "total_cents": sum(i["unit_price_cents"] * i["quantity"] for i in item_docs),
        "currency": currency,
        "status": OrderStatus.PENDING.value,
        "payment_status": PaymentStatus.PENDING.value,
        "shipping_address": dict(shipping_address or {}),
        "refunded_amount_cents": 0,
        "cancel_reason": None,
        "cancelled_at": None,
        "delivered_at": None,
        "refunded_at": None,
        "created_at": now,
        "updated_at": now,
        "version": 1,
    }

    # Items first: an orphaned item without its order is never aggregated.
    with store_guard("order_items.insert"):
        await db.order_items.insert_many(item_docs)
    with store_guard("orders.insert"):
        await db.orders.insert_one(order)

    return order


# ==============================
# Reads
# ==============================

async def get_order(db, order_id) -> dict:
    return await find_by_id(db.orders, parse_object_id(order_id, "order"), "order")


async def get_order_items(db, order_id) -> list[dict]:
    oid = parse_object_id(order_id, "order")
    with store_guard("order_items.list"):
        return await db.order_items.find({"order_id": oid}).to_list(None)


async def get_order_seller_ids(db, order_id) -> set[str]:
    oid = parse_object_id(order_id, "order")
    with store_guard("order_items.distinct"):
        return set(await db.order_items.distinct("seller_id", {"order_id": oid}))


async def list_orders(
    db,
    *,
    buyer_id: str | None = None,
    seller_id: str | None = None,
    status: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[dict]:
    query = {}
    if buyer_id:
        query["buyer_id"] = buyer_id
    if status:
        query["status"] = status
    if created_from or created_to:
        query["created_at"] = {}
        if created_from:
            query["created_at"]["$gte"] = created_from
        if created_to:
            query["created_at"]["$lte"] = created_to

    if seller_id:
        with store_guard("order_items.distinct"):
            order_ids = await db.order_items.distinct("order_id", {"seller_id": seller_id})
        query["_id"] = {"$in": order_ids}

    with store_guard("orders.list"):
        return await (
            db.orders
            .find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .limit(limit)
            .to_list(limit)
        )


# ==============================
# Writes
# ==============================

async def update_order_status(db, order: dict, status: str, extra: dict | None = None) -> dict:
    """
    Move ``order`` to ``status`` if nobody changed it since it was read.
    """
    changes = {"status": status}
    changes.update(extra or {})
    return await guarded_update(
        db.orders,
        order,
        entity="order",
        expect={"status": order["status"]},
        changes=changes,
    )
