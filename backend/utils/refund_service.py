"""
Refund workflow: pending -> approved | rejected.

Approval of the order's full remaining balance forces the order into
``refunded``; partial refunds only advance the order's refunded amount.
"""

import logging
from datetime import datetime

from bson import ObjectId
from pymongo import ReturnDocument

from config.constants import (
    ACTION_ORDER_STATUS_CHANGED,
    ACTION_REFUND_APPROVED,
    ACTION_REFUND_REJECTED,
    ACTION_REFUND_REQUESTED,
    DEFAULT_LIST_LIMIT,
    ENTITY_ORDER,
    ENTITY_REFUND,
)
from models.order import OrderStatus
from models.refund import RefundStatus
from utils.audit import log_audit
from utils.errors import InvalidState
from utils.guards import assert_buyer_owns, parse_object_id
from utils.mongo import find_by_id, guarded_update, store_guard
from utils.money import from_cents, to_cents
from utils.order_state import transition_side_effects
from utils.order_store import get_order

logger = logging.getLogger(__name__)


# ==============================
# Balances
# ==============================

async def approved_refund_cents(db, order_id: ObjectId) -> int:
    pipeline = [
        {"$match": {"order_id": order_id, "status": RefundStatus.APPROVED.value}},
        {"$group": {"_id": None, "amount": {"$sum": "$amount_cents"}}},
    ]
    with store_guard("refunds.aggregate"):
        result = await db.refunds.aggregate(pipeline).to_list(1)
    if not result:
        return 0
    return result[0]["amount"]


async def remaining_refundable_cents(db, order: dict) -> int:
    return order["total_cents"] - await approved_refund_cents(db, order["_id"])


def _assert_within_balance(amount_cents: int, remaining_cents: int, order: dict):
    if amount_cents > remaining_cents:
        raise InvalidState(
            "Refund amount exceeds the order's remaining refundable balance",
            precondition="amount_within_remaining_balance",
            order_id=str(order["_id"]),
            amount=str(from_cents(amount_cents)),
            remaining=str(from_cents(remaining_cents)),
        )


# ==============================
# Reads
# ==============================

async def get_refund(db, refund_id) -> dict:
    return await find_by_id(db.refunds, parse_object_id(refund_id, "refund"), "refund")


async def list_refunds(
    db,
    *,
    order_id=None,
    requester_id: str | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[dict]:
    query = {}
    if order_id:
        query["order_id"] = parse_object_id(order_id, "order")
    if requester_id:
        query["requester_id"] = requester_id
    if status:
        query["status"] = status

    with store_guard("refunds.list"):
        return await (
            db.refunds
            .find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .limit(limit)
            .to_list(limit)
        )


# ==============================
# Request
# ==============================

async def request_refund(db, order_id, amount, reason: str | None, actor: dict) -> dict:
    order = await get_order(db, order_id)
    assert_buyer_owns(actor, order)

    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise InvalidState("Refund amount must be positive", precondition="positive_amount")

    _assert_within_balance(amount_cents, await remaining_refundable_cents(db, order), order)

    now = datetime.utcnow()
    refund = {
        "order_id": order["_id"],
        "requester_id": actor["_id"],
        "amount_cents": amount_cents,
        "reason": reason,
        "status": RefundStatus.PENDING.value,
        "resolution": None,
        "resolved_by": None,
        "resolved_at": None,
        "created_at": now,
        "updated_at": now,
        "version": 1,
    }
    with store_guard("refunds.insert"):
        await db.refunds.insert_one(refund)

    await log_audit(
        db,
        actor=actor,
        action=ACTION_REFUND_REQUESTED,
        entity_type=ENTITY_REFUND,
        entity_id=refund["_id"],
        new_values={
            "order_id": str(order["_id"]),
            "amount": str(from_cents(amount_cents)),
            "status": refund["status"],
        },
    )
    return refund


# ==============================
# Approve
# ==============================

async def _rollback_order(db, before: dict, after: dict):
    """
    Undo the order half of an approval whose refund half lost a race.
    """
    restore = {
        "status": before["status"],
        "payment_status": before.get("payment_status"),
        "refunded_amount_cents": before.get("refunded_amount_cents", 0),
        "refunded_at": before.get("refunded_at"),
        "updated_at": datetime.utcnow(),
    }
    try:
        with store_guard("orders.rollback"):
            restored = await db.orders.find_one_and_update(
                {"_id": after["_id"], "version": after["version"]},
                {"$set": restore, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
    except Exception:
        logger.exception("REFUND_ROLLBACK_FAILED order=%s", after["_id"])
        raise

    if restored is None:
        logger.error("REFUND_ROLLBACK_FAILED order=%s reason=order_changed", after["_id"])


async def approve_refund(db, refund_id, actor: dict) -> dict:
    refund = await get_refund(db, refund_id)
    if refund["status"] != RefundStatus.PENDING.value:
        raise InvalidState(
            f"Refund is {refund['status']}, not pending",
            precondition="status_is_pending",
            current=refund["status"],
        )

    order = await get_order(db, refund["order_id"])
    remaining_cents = await remaining_refundable_cents(db, order)
    _assert_within_balance(refund["amount_cents"], remaining_cents, order)

    full_refund = refund["amount_cents"] == remaining_cents
    refunded_total = order["total_cents"] - remaining_cents + refund["amount_cents"]

    order_changes = {"refunded_amount_cents": refunded_total}
    if full_refund:
        order_changes["status"] = OrderStatus.REFUNDED.value
        order_changes.update(transition_side_effects(order, OrderStatus.REFUNDED.value))

    # 1) Order first: the version bump serializes approvals on one order.
    updated_order = await guarded_update(
        db.orders,
        order,
        entity="order",
        expect={"status": order["status"]},
        changes=order_changes,
    )

    # 2) Refund second; undo the order write if this loses.
    now = datetime.utcnow()
    try:
        approved = await guarded_update(
            db.refunds,
            refund,
            entity="refund",
            expect={"status": RefundStatus.PENDING.value},
            changes={
                "status": RefundStatus.APPROVED.value,
                "resolved_by": actor["_id"],
                "resolved_at": now,
            },
        )
    except Exception:
        await _rollback_order(db, order, updated_order)
        raise

    await log_audit(
        db,
        actor=actor,
        action=ACTION_REFUND_APPROVED,
        entity_type=ENTITY_REFUND,
        entity_id=refund["_id"],
        old_values={"status": refund["status"]},
        new_values={
            "status": approved["status"],
            "amount": str(from_cents(refund["amount_cents"])),
            "order_refunded": full_refund,
        },
    )

    if full_refund:
        await log_audit(
            db,
            actor=actor,
            action=ACTION_ORDER_STATUS_CHANGED,
            entity_type=ENTITY_ORDER,
            entity_id=order["_id"],
            old_values={"status": order["status"]},
            new_values={"status": OrderStatus.REFUNDED.value, "refund_id": str(refund["_id"])},
        )

    return approved


# ==============================
# Reject
# ==============================

async def reject_refund(db, refund_id, actor: dict, reason: str | None = None) -> dict:
    refund = await get_refund(db, refund_id)
    if refund["status"] != RefundStatus.PENDING.value:
        raise InvalidState(
            f"Refund is {refund['status']}, not pending",
            precondition="status_is_pending",
            current=refund["status"],
        )

    rejected = await guarded_update(
        db.refunds,
        refund,
        entity="refund",
        expect={"status": RefundStatus.PENDING.value},
        changes={
            "status": RefundStatus.REJECTED.value,
            "resolution": reason,
            "resolved_by": actor["_id"],
            "resolved_at": datetime.utcnow(),
        },
    )

    await log_audit(
        db,
        actor=actor,
        action=ACTION_REFUND_REJECTED,
        entity_type=ENTITY_REFUND,
        entity_id=refund["_id"],
        old_values={"status": refund["status"]},
        new_values={"status": rejected["status"], "reason": reason},
    )
    return rejected


async def resolve_refund(db, refund_id, decision: str, actor: dict, reason: str | None = None) -> dict:
    if decision == "approve":
        return await approve_refund(db, refund_id, actor)
    if decision == "reject":
        return await reject_refund(db, refund_id, actor, reason)
    raise InvalidState(f"Unknown refund decision '{decision}'", precondition="known_decision")
