from fastapi import APIRouter, Depends, Header, Query

from config.constants import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, ROLE_SELLER
from database import get_db
from models.payout import PayoutRequestCreate, PayoutStatus, SellerBalance
from utils.guards import assert_seller_owns
from utils.idempotency import (
    clear_idempotency_key,
    complete_idempotency_key,
    reserve_idempotency_key,
)
from utils.mongo import serialize_doc, serialize_docs
from utils.security import require_role
from utils.settlement import compute_seller_balance, get_payout, list_payouts, request_payout

router = APIRouter(prefix="/seller", tags=["Seller"])


# ======================================================
# BALANCE
# ======================================================

@router.get("/balance", response_model=SellerBalance)
async def seller_balance(
    seller=Depends(require_role(ROLE_SELLER)),
    db=Depends(get_db),
):
    return await compute_seller_balance(db, seller["_id"])


# ======================================================
# PAYOUTS
# ======================================================

@router.post("/payouts")
async def create_payout_request(
    data: PayoutRequestCreate,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    seller=Depends(require_role(ROLE_SELLER)),
    db=Depends(get_db),
):
    scope = f"payout_request:{seller['_id']}"

    if idempotency_key:
        existing = await reserve_idempotency_key(db=db, key=idempotency_key, scope=scope)
        if existing:
            return existing

    try:
        payout = await request_payout(
            db,
            seller["_id"],
            data.amount,
            data.destination,
            actor=seller,
        )
    except Exception:
        if idempotency_key:
            await clear_idempotency_key(db=db, key=idempotency_key, scope=scope)
        raise

    response = {"message": "Payout requested", "payout": serialize_doc(payout)}

    if idempotency_key:
        await complete_idempotency_key(db=db, key=idempotency_key, scope=scope, response=response)

    return response


@router.get("/payouts")
async def seller_payouts(
    status: PayoutStatus | None = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    seller=Depends(require_role(ROLE_SELLER)),
    db=Depends(get_db),
):
    payouts = await list_payouts(
        db,
        seller_id=seller["_id"],
        status=status.value if status else None,
        limit=limit,
    )
    return {"count": len(payouts), "payouts": serialize_docs(payouts)}


@router.get("/payouts/{payout_id}")
async def seller_payout_detail(
    payout_id: str,
    seller=Depends(require_role(ROLE_SELLER)),
    db=Depends(get_db),
):
    payout = await get_payout(db, payout_id)
    assert_seller_owns(seller, [payout["seller_id"]], "payout", payout["_id"])
    return {"payout": serialize_doc(payout)}
