from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from config.constants import (
    DEFAULT_LIST_LIMIT,
    ENTITY_ORDER,
    MAX_LIST_LIMIT,
    ROLE_ADMIN,
    ROLE_BUYER,
    ROLE_SELLER,
)
from database import get_db
from models.order import OrderStatus, OrderStatusUpdate
from utils.audit import list_audit_logs
from utils.guards import assert_buyer_owns, assert_seller_owns
from utils.mongo import serialize_doc, serialize_docs
from utils.money import from_cents
from utils.order_state import transition_order
from utils.order_store import get_order, get_order_items, list_orders
from utils.refund_service import remaining_refundable_cents
from utils.security import require_role

router = APIRouter(prefix="/orders", tags=["Orders"])

# Seller may drive fulfilment; refunds only happen through the refund workflow.
SELLER_TARGETS = {
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
}
BUYER_TARGETS = {OrderStatus.CANCELLED}


async def _load_visible_order(db, order_id: str, user: dict):
    order = await get_order(db, order_id)
    items = await get_order_items(db, order["_id"])

    assert_buyer_owns(user, order)
    assert_seller_owns(user, {i["seller_id"] for i in items}, ENTITY_ORDER, order["_id"])

    return order, items


# ======================================================
# LIST ORDERS
# ======================================================

@router.get("")
async def list_orders_route(
    status: OrderStatus | None = None,
    buyer_id: str | None = None,
    seller_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    user=Depends(require_role(ROLE_ADMIN, ROLE_SELLER, ROLE_BUYER)),
    db=Depends(get_db),
):
    # Non-admins only ever see their own scope.
    if user["role"] == ROLE_BUYER:
        buyer_id, seller_id = user["_id"], None
    elif user["role"] == ROLE_SELLER:
        seller_id = user["_id"]

    orders = await list_orders(
        db,
        buyer_id=buyer_id,
        seller_id=seller_id,
        status=status.value if status else None,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
    )
    return {"count": len(orders), "orders": serialize_docs(orders)}


# ======================================================
# ORDER DETAIL
# ======================================================

@router.get("/{order_id}")
async def get_order_route(
    order_id: str,
    user=Depends(require_role(ROLE_ADMIN, ROLE_SELLER, ROLE_BUYER)),
    db=Depends(get_db),
):
    order, items = await _load_visible_order(db, order_id, user)
    return {"order": serialize_doc(order), "items": serialize_docs(items)}


@router.get("/{order_id}/refundable")
async def get_refundable_balance(
    order_id: str,
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    order, _ = await _load_visible_order(db, order_id, user)
    remaining = await remaining_refundable_cents(db, order)
    return {
        "order_id": str(order["_id"]),
        "total": str(from_cents(order["total_cents"])),
        "remaining_refundable": str(from_cents(remaining)),
    }


# ======================================================
# TRANSITION ORDER
# ======================================================

@router.post("/{order_id}/status")
async def transition_order_route(
    order_id: str,
    data: OrderStatusUpdate,
    user=Depends(require_role(ROLE_ADMIN, ROLE_SELLER, ROLE_BUYER)),
    db=Depends(get_db),
):
    await _load_visible_order(db, order_id, user)

    if user["role"] == ROLE_SELLER and data.status not in SELLER_TARGETS:
        raise HTTPException(403, "Sellers cannot set this status")
    if user["role"] == ROLE_BUYER and data.status not in BUYER_TARGETS:
        raise HTTPException(403, "Buyers can only cancel orders")

    order = await transition_order(db, order_id, data.status, user, reason=data.reason)
    return {"message": "Order status updated", "order": serialize_doc(order)}


# ======================================================
# ORDER AUDIT TRAIL (ADMIN)
# ======================================================

@router.get("/{order_id}/audit")
async def get_order_audit(
    order_id: str,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    order = await get_order(db, order_id)
    entries = await list_audit_logs(db, entity_type=ENTITY_ORDER, entity_id=str(order["_id"]))
    return {"order_id": str(order["_id"]), "entries": serialize_docs(entries)}
