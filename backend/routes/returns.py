from fastapi import APIRouter, Depends, Query

from config.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, ROLE_ADMIN, ROLE_BUYER
from database import get_db
from models.returns import ReturnCreate, ReturnStatus, ReturnStatusUpdate
from utils.guards import assert_buyer_owns
from utils.mongo import serialize_doc, serialize_docs
from utils.return_service import get_return, list_returns, request_return, transition_return
from utils.security import require_role

router = APIRouter(prefix="/returns", tags=["Returns"])


@router.post("")
async def create_return(
    data: ReturnCreate,
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    ret = await request_return(db, data.order_id, data.reason, user, notes=data.notes)
    return {"message": "Return requested", "return": serialize_doc(ret)}


@router.get("")
async def list_returns_route(
    order_id: str | None = None,
    status: ReturnStatus | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    returns = await list_returns(
        db,
        order_id=order_id,
        requester_id=user["_id"] if user["role"] == ROLE_BUYER else None,
        status=status.value if status else None,
        limit=limit,
    )
    return {"count": len(returns), "returns": serialize_docs(returns)}


@router.get("/{return_id}")
async def get_return_route(
    return_id: str,
    user=Depends(require_role(ROLE_ADMIN, ROLE_BUYER)),
    db=Depends(get_db),
):
    ret = await get_return(db, return_id)
    assert_buyer_owns(user, ret, "return", field="requester_id")
    return {"return": serialize_doc(ret)}


# ======================================================
# ADMIN STATUS UPDATES
# ======================================================

@router.post("/{return_id}/status")
async def update_return_status(
    return_id: str,
    data: ReturnStatusUpdate,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    ret = await transition_return(
        db,
        return_id,
        data.status,
        admin,
        tracking_number=data.tracking_number,
        refund_amount=data.refund_amount,
    )
    return {"message": f"Return {ret['status']}", "return": serialize_doc(ret)}
