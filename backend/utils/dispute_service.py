"""
Dispute workflow: open -> investigating -> resolved_buyer | resolved_seller -> closed,
with ``closed`` reachable from any non-terminal state.
"""

from datetime import datetime

from pymongo import ReturnDocument

from config.constants import (
    ACTION_DISPUTE_OPENED,
    ACTION_DISPUTE_RESOLUTION_ADDED,
    ACTION_DISPUTE_STATUS_CHANGED,
    DEFAULT_LIST_LIMIT,
    ENTITY_DISPUTE,
)
from config.env import STRICT_DISPUTE_TRANSITIONS
from models.dispute import DisputeStatus
from utils.audit import log_audit
from utils.errors import AlreadyResolved, InvalidState, NotFound
from utils.guards import assert_buyer_owns, parse_object_id
from utils.mongo import find_by_id, guarded_update, store_guard
from utils.order_store import get_order, get_order_seller_ids

DISPUTE_TRANSITIONS = {
    DisputeStatus.OPEN.value: {DisputeStatus.INVESTIGATING.value, DisputeStatus.CLOSED.value},
    DisputeStatus.INVESTIGATING.value: {
        DisputeStatus.RESOLVED_BUYER.value,
        DisputeStatus.RESOLVED_SELLER.value,
        DisputeStatus.CLOSED.value,
    },
    DisputeStatus.RESOLVED_BUYER.value: {DisputeStatus.CLOSED.value},
    DisputeStatus.RESOLVED_SELLER.value: {DisputeStatus.CLOSED.value},
    DisputeStatus.CLOSED.value: set(),
}


def stamps_resolution(status: str) -> bool:
    return status.startswith("resolved_") or status == DisputeStatus.CLOSED.value


async def get_dispute(db, dispute_id) -> dict:
    return await find_by_id(db.disputes, parse_object_id(dispute_id, "dispute"), "dispute")


async def list_disputes(
    db,
    *,
    order_id=None,
    buyer_id: str | None = None,
    seller_id: str | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[dict]:
    query = {}
    if order_id:
        query["order_id"] = parse_object_id(order_id, "order")
    if buyer_id:
        query["buyer_id"] = buyer_id
    if seller_id:
        query["seller_id"] = seller_id
    if status:
        query["status"] = status

    with store_guard("disputes.list"):
        return await (
            db.disputes
            .find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .limit(limit)
            .to_list(limit)
        )


async def open_dispute(
    db,
    order_id,
    seller_id: str,
    reason: str,
    actor: dict,
    *,
    description: str | None = None,
) -> dict:
    if not (reason or "").strip():
        raise InvalidState("Dispute reason required", precondition="reason_present")

    order = await get_order(db, order_id)
    assert_buyer_owns(actor, order)

    if seller_id not in await get_order_seller_ids(db, order["_id"]):
        raise InvalidState(
            "Seller did not sell any item of this order",
            precondition="seller_in_order",
            seller_id=seller_id,
        )

    with store_guard("disputes.find"):
        active = await db.disputes.find_one({
            "order_id": order["_id"],
            "seller_id": seller_id,
            "status": {"$ne": DisputeStatus.CLOSED.value},
        })
    if active:
        raise InvalidState(
            "A dispute for this order and seller is already open",
            precondition="no_active_dispute",
            dispute_id=str(active["_id"]),
        )

    now = datetime.utcnow()
    dispute = {
        "order_id": order["_id"],
        "seller_id": seller_id,
        "buyer_id": order["buyer_id"],
        "reason": reason.strip(),
        "description": description,
        "status": DisputeStatus.OPEN.value,
        "resolution": None,
        "resolved_by": None,
        "resolved_at": None,
        "created_at": now,
        "updated_at": now,
        "version": 1,
    }
    with store_guard("disputes.insert"):
        await db.disputes.insert_one(dispute)

    await log_audit(
        db,
        actor=actor,
        action=ACTION_DISPUTE_OPENED,
        entity_type=ENTITY_DISPUTE,
        entity_id=dispute["_id"],
        new_values={
            "order_id": str(order["_id"]),
            "seller_id": seller_id,
            "reason": dispute["reason"],
            "status": dispute["status"],
        },
    )
    return dispute


async def set_dispute_status(
    db,
    dispute_id,
    new_status,
    actor: dict,
    *,
    strict: bool | None = None,
) -> dict:
    target = new_status.value if isinstance(new_status, DisputeStatus) else str(new_status)
    strict = STRICT_DISPUTE_TRANSITIONS if strict is None else strict

    if target not in DISPUTE_TRANSITIONS:
        raise InvalidState(f"Unknown dispute status '{target}'", precondition="known_status")

    dispute = await get_dispute(db, dispute_id)
    current = dispute["status"]

    if strict and target not in DISPUTE_TRANSITIONS[current]:
        raise InvalidState(
            f"Dispute cannot move from {current} to {target}",
            precondition="allowed_successor",
            current=current,
            allowed=sorted(DISPUTE_TRANSITIONS[current]),
        )

    changes = {"status": target}
    if stamps_resolution(target):
        changes["resolved_at"] = datetime.utcnow()
        changes["resolved_by"] = actor["_id"]

    updated = await guarded_update(
        db.disputes,
        dispute,
        entity="dispute",
        expect={"status": current},
        changes=changes,
    )

    await log_audit(
        db,
        actor=actor,
        action=ACTION_DISPUTE_STATUS_CHANGED,
        entity_type=ENTITY_DISPUTE,
        entity_id=dispute["_id"],
        old_values={"status": current},
        new_values={"status": target},
    )
    return updated


async def add_dispute_resolution(db, dispute_id, text: str, actor: dict) -> dict:
    text = (text or "").strip()
    if not text:
        raise InvalidState("Resolution text required", precondition="resolution_present")

    oid = parse_object_id(dispute_id, "dispute")
    now = datetime.utcnow()

    # The null check lives in the filter so two admins cannot both win.
    with store_guard("disputes.update"):
        updated = await db.disputes.find_one_and_update(
            {"_id": oid, "resolution": None},
            {
                "$set": {
                    "resolution": text,
                    "resolved_at": now,
                    "resolved_by": actor["_id"],
                    "updated_at": now,
                },
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )

    if updated is None:
        with store_guard("disputes.get"):
            existing = await db.disputes.find_one({"_id": oid}, {"resolution": 1})
        if existing is None:
            raise NotFound("Dispute not found", entity="dispute", id=str(oid))
        raise AlreadyResolved("Dispute already has a resolution", dispute_id=str(oid))

    await log_audit(
        db,
        actor=actor,
        action=ACTION_DISPUTE_RESOLUTION_ADDED,
        entity_type=ENTITY_DISPUTE,
        entity_id=oid,
        old_values={"resolution": None},
        new_values={"resolution": text},
    )
    return updated
