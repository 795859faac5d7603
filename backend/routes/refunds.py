from fastapi import APIRouter, Depends, Query

from config.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, ROLE_ADMIN, ROLE_BUYER
from database import get_db
from models.refund import RefundCreate, RefundDecision, RefundStatus
from utils.guards import assert_buyer_owns
from utils.mongo import serialize_doc, serialize_docs
from utils.refund_service import get_refund, list_refunds, request_refund, resolve_refund
from utils.security import require_role

router = APIRouter(prefix="/refunds", tags=["Refunds"])


@router.post("")
async def create_refund(
    data: RefundCreate,
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    refund = await request_refund(db, data.order_id, data.amount, data.reason, user)
    return {"message": "Refund requested", "refund": serialize_doc(refund)}


@router.get("")
async def list_refunds_route(
    order_id: str | None = None,
    status: RefundStatus | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    refunds = await list_refunds(
        db,
        order_id=order_id,
        requester_id=user["_id"] if user["role"] == ROLE_BUYER else None,
        status=status.value if status else None,
        limit=limit,
    )
    return {"count": len(refunds), "refunds": serialize_docs(refunds)}


@router.get("/{refund_id}")
async def get_refund_route(
    refund_id: str,
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    refund = await get_refund(db, refund_id)
    assert_buyer_owns(user, refund, "refund", field="requester_id")
    return {"refund": serialize_doc(refund)}


# ======================================================
# ADMIN DECISION
# ======================================================

@router.post("/{refund_id}/decision")
async def decide_refund(
    refund_id: str,
    data: RefundDecision,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    refund = await resolve_refund(db, refund_id, data.decision, admin, data.reason)
    return {
        "message": "Refund approved" if data.decision == "approve" else "Refund rejected",
        "refund": serialize_doc(refund),
    }
