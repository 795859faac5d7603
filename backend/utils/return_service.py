"""
Return workflow: requested -> approved -> shipped -> received -> refunded,
with ``rejected`` reachable from every non-terminal state.

Return status and order status are tracked independently: reaching
``refunded`` here never changes the order. Money goes back through the
refund workflow.
"""

from datetime import datetime, timedelta

from config.constants import (
    ACTION_RETURN_REQUESTED,
    ACTION_RETURN_STATUS_CHANGED,
    DEFAULT_LIST_LIMIT,
    ENTITY_RETURN,
)
from config.env import RETURN_WINDOW_DAYS
from models.order import OrderStatus
from models.returns import ReturnStatus
from utils.audit import log_audit
from utils.errors import InvalidState
from utils.guards import assert_buyer_owns, parse_object_id
from utils.mongo import find_by_id, guarded_update, store_guard
from utils.money import from_cents, to_cents
from utils.order_store import get_order

RETURN_TRANSITIONS = {
    ReturnStatus.REQUESTED.value: {ReturnStatus.APPROVED.value, ReturnStatus.REJECTED.value},
    ReturnStatus.APPROVED.value: {ReturnStatus.SHIPPED.value, ReturnStatus.REJECTED.value},
    ReturnStatus.SHIPPED.value: {ReturnStatus.RECEIVED.value, ReturnStatus.REJECTED.value},
    ReturnStatus.RECEIVED.value: {ReturnStatus.REFUNDED.value, ReturnStatus.REJECTED.value},
    ReturnStatus.REFUNDED.value: set(),
    ReturnStatus.REJECTED.value: set(),
}

ACTIVE_RETURN_STATUSES = [
    ReturnStatus.REQUESTED.value,
    ReturnStatus.APPROVED.value,
    ReturnStatus.SHIPPED.value,
    ReturnStatus.RECEIVED.value,
]


async def get_return(db, return_id) -> dict:
    return await find_by_id(db.returns, parse_object_id(return_id, "return"), "return")


async def list_returns(
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

    with store_guard("returns.list"):
        return await (
            db.returns
            .find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .limit(limit)
            .to_list(limit)
        )


async def request_return(db, order_id, reason: str, actor: dict, *, notes: str | None = None) -> dict:
    now = datetime.utcnow()

    if not (reason or "").strip():
        raise InvalidState("Return reason required", precondition="reason_present")

    order = await get_order(db, order_id)
    assert_buyer_owns(actor, order)

    if order["status"] != OrderStatus.DELIVERED.value:
        raise InvalidState(
            "Return allowed only after delivery",
            precondition="order_delivered",
            current=order["status"],
        )

    delivered_at = order.get("delivered_at")
    if delivered_at and now > delivered_at + timedelta(days=RETURN_WINDOW_DAYS):
        raise InvalidState("Return window expired", precondition="within_return_window")

    with store_guard("returns.find"):
        active = await db.returns.find_one({
            "order_id": order["_id"],
            "status": {"$in": ACTIVE_RETURN_STATUSES},
        })
    if active:
        raise InvalidState(
            "Return already requested",
            precondition="no_active_return",
            return_id=str(active["_id"]),
        )

    ret = {
        "order_id": order["_id"],
        "requester_id": actor["_id"],
        "reason": reason.strip(),
        "notes": (notes or "").strip() or None,
        "status": ReturnStatus.REQUESTED.value,
        "refund_amount_cents": None,
        "tracking_number": None,
        "processed_at": None,
        "processed_by": None,
        "created_at": now,
        "updated_at": now,
        "version": 1,
    }
    with store_guard("returns.insert"):
        await db.returns.insert_one(ret)

    await log_audit(
        db,
        actor=actor,
        action=ACTION_RETURN_REQUESTED,
        entity_type=ENTITY_RETURN,
        entity_id=ret["_id"],
        new_values={"order_id": str(order["_id"]), "reason": ret["reason"], "status": ret["status"]},
    )
    return ret


async def transition_return(
    db,
    return_id,
    target_status,
    actor: dict,
    *,
    tracking_number: str | None = None,
    refund_amount=None,
) -> dict:
    target = target_status.value if isinstance(target_status, ReturnStatus) else str(target_status)
    ret = await get_return(db, return_id)
    current = ret["status"]

    if target not in RETURN_TRANSITIONS:
        raise InvalidState(f"Unknown return status '{target}'", precondition="known_status")

    allowed = RETURN_TRANSITIONS[current]
    if target not in allowed:
        raise InvalidState(
            f"Return cannot move from {current} to {target}",
            precondition="allowed_successor",
            current=current,
            allowed=sorted(allowed),
        )

    changes = {"status": target}
    if tracking_number:
        changes["tracking_number"] = tracking_number.strip()

    if refund_amount is not None:
        refund_cents = to_cents(refund_amount)
        order = await get_order(db, ret["order_id"])
        if refund_cents > order["total_cents"]:
            raise InvalidState(
                "Return refund amount exceeds order total",
                precondition="refund_within_total",
                total=str(from_cents(order["total_cents"])),
            )
        changes["refund_amount_cents"] = refund_cents

    if target == ReturnStatus.REFUNDED.value:
        changes["processed_at"] = datetime.utcnow()
        changes["processed_by"] = actor["_id"]

    updated = await guarded_update(
        db.returns,
        ret,
        entity="return",
        expect={"status": current},
        changes=changes,
    )

    new_values = {"status": target}
    if "tracking_number" in changes:
        new_values["tracking_number"] = changes["tracking_number"]
    if "refund_amount_cents" in changes:
        new_values["refund_amount"] = str(from_cents(changes["refund_amount_cents"]))

    await log_audit(
        db,
        actor=actor,
        action=ACTION_RETURN_STATUS_CHANGED,
        entity_type=ENTITY_RETURN,
        entity_id=ret["_id"],
        old_values={"status": current},
        new_values=new_values,
    )
    return updated
