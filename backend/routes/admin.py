from fastapi import APIRouter, Depends, Query

from config.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, ROLE_ADMIN
from database import get_db
from models.payout import PayoutFailure, PayoutStatus, SellerBalance
from utils.audit import list_audit_logs
from utils.mongo import serialize_doc, serialize_docs
from utils.security import require_role
from utils.settlement import (
    compute_seller_balance,
    fail_payout,
    get_payout,
    list_payouts,
    process_payout,
    reconcile_payout,
)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ======================================================
# PAYOUTS
# ======================================================

@router.get("/payouts")
async def admin_list_payouts(
    seller_id: str | None = None,
    status: PayoutStatus | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    payouts = await list_payouts(
        db,
        seller_id=seller_id,
        status=status.value if status else None,
        limit=limit,
    )
    return {"count": len(payouts), "payouts": serialize_docs(payouts)}


@router.get("/payouts/{payout_id}")
async def admin_payout_detail(
    payout_id: str,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    return {"payout": serialize_doc(await get_payout(db, payout_id))}


@router.post("/payouts/{payout_id}/process")
async def admin_process_payout(
    payout_id: str,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    payout = await process_payout(db, payout_id, admin)
    return {"message": f"Payout {payout['status']}", "payout": serialize_doc(payout)}


@router.post("/payouts/{payout_id}/reconcile")
async def admin_reconcile_payout(
    payout_id: str,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    payout = await reconcile_payout(db, payout_id, admin)
    return {"message": f"Payout {payout['status']}", "payout": serialize_doc(payout)}


@router.post("/payouts/{payout_id}/fail")
async def admin_fail_payout(
    payout_id: str,
    data: PayoutFailure,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    payout = await fail_payout(db, payout_id, admin, data.reason)
    return {"message": "Payout failed", "payout": serialize_doc(payout)}


# ======================================================
# SELLER BALANCES
# ======================================================

@router.get("/sellers/{seller_id}/balance", response_model=SellerBalance)
async def admin_seller_balance(
    seller_id: str,
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    return await compute_seller_balance(db, seller_id)


# ======================================================
# AUDIT LOG
# ======================================================

@router.get("/audit-logs")
async def admin_audit_logs(
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    admin=Depends(require_role(ROLE_ADMIN)),
    db=Depends(get_db),
):
    entries = await list_audit_logs(
        db,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        limit=limit,
    )
    return {"count": len(entries), "entries": serialize_docs(entries)}
