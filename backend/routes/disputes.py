from fastapi import APIRouter, Depends, Query

from config.constants import (
    DEFAULT_LIST_LIMIT,
    MAX_LIST_LIMIT,
    ROLE_ADMIN,
    ROLE_BUYER,
    ROLE_SELLER,
)
from database import get_db
from models.dispute import DisputeCreate, DisputeResolution, DisputeStatus, DisputeStatusUpdate
from utils.dispute_service import (
    add_dispute_resolution,
    get_dispute,
    list_disputes,
    open_dispute,
    set_dispute_status,
)
from utils.guards import assert_buyer_owns, assert_seller_owns
from utils.mongo import serialize_doc, serialize_docs
from utils.security import require_role

router = APIRouter(prefix="/disputes", tags=["Disputes"])


@router.post("")
async def create_dispute(
    data: DisputeCreate,
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    dispute = await open_dispute(
        db,
        data.order_id,
        data.seller_id,
        data.reason,
        user,
        description=data.description,
    )
    return {"message": "Dispute opened", "dispute": serialize_doc(dispute)}


@router.get("")
async def list_disputes_route(
    order_id: str | None = None,
    status: DisputeStatus | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    user=Depends(require_role(ROLE_ADMIN, ROLE_SELLER, ROLE_BUYER)),
    db=Depends(get_db),
):
    disputes = await list_disputes(
        db,
        order_id=order_id,
        buyer_id=user["_id"] if user["role"] == ROLE_BUYER else None,
        seller_id=user["_id"] if user["role"] == ROLE_SELLER else None,
        status=status.value if status else None,
        limit=limit,
    )
    return {"count": len(disputes), "disputes": serialize_docs(disputes)}


@router.get("/{dispute_id}")
async def get_dispute_route(
    dispute_id: str,
    user=Depends(require_role(ROLE_ADMIN, ROLE_SELLER, ROLE_BUYER)),
    db=Depends(get_db),
):
    dispute = await get_dispute(db, dispute_id)
    assert_buyer_owns(user, dispute, "dispute")
    assert_seller_owns(user, [dispute["seller_id"]], "dispute", dispute["_id"])
    return {"dispute": serialize_doc(dispute)}


# ======================================================
# ADMIN HANDLING
# ======================================================

@router.post("/{dispute_id}/status")
async def update_dispute_status(
    dispute_id: str,
    data: DisputeStatusUpdate,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    dispute = await set_dispute_status(db, dispute_id, data.status, admin)
    return {"message": "Dispute status updated", "dispute": serialize_doc(dispute)}


@router.post("/{dispute_id}/resolution")
async def resolve_dispute(
    dispute_id: str,
    data: DisputeResolution,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    dispute = await add_dispute_resolution(db, dispute_id, data.text, admin)
    return {"message": "Resolution recorded", "dispute": serialize_doc(dispute)}
