"""
Seller settlement.

Balances are derived on every call, never stored:

    gross     = sum(unit_price * quantity) of the seller's items in delivered orders
    fee       = round(gross * fee_rate)
    net       = gross - fee
    pending   = net amounts of pending + processing payouts
    paid      = net amounts of completed payouts
    available = net - pending - paid

Failed payouts count for nothing, so their funds are available again.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal

from pymongo.errors import DuplicateKeyError

from config.constants import (
    ACTION_PAYOUT_COMPLETED,
    ACTION_PAYOUT_FAILED,
    ACTION_PAYOUT_PROCESSING,
    ACTION_PAYOUT_REQUESTED,
    DEFAULT_LIST_LIMIT,
    ENTITY_PAYOUT,
    ROLE_SELLER,
)
from config.env import CURRENCY, MIN_PAYOUT_AMOUNT, PLATFORM_FEE_RATE
from models.order import OrderStatus
from models.payout import PayoutStatus
from utils.audit import log_audit
from utils.errors import (
    BelowMinimum,
    Conflict,
    InsufficientBalance,
    InvalidDestination,
    InvalidState,
    PayoutProviderError,
)
from utils.guards import parse_object_id
from utils.mongo import find_by_id, guarded_update, store_guard
from utils.money import fee_cents, from_cents, gross_for_net, to_cents
from utils.payouts import execute_bank_payout, fetch_payout_status, map_provider_status

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = {PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value}


# ==============================
# Aggregation
# ==============================

async def delivered_gross_cents(db, seller_id: str) -> int:
    with store_guard("order_items.list"):
        items = await db.order_items.find(
            {"seller_id": seller_id},
            {"order_id": 1, "unit_price_cents": 1, "quantity": 1},
        ).to_list(None)
    if not items:
        return 0

    order_ids = list({item["order_id"] for item in items})
    with store_guard("orders.list"):
        delivered = await db.orders.find(
            {"_id": {"$in": order_ids}, "status": OrderStatus.DELIVERED.value},
            {"_id": 1},
        ).to_list(None)
    delivered_ids = {order["_id"] for order in delivered}

    return sum(
        item["unit_price_cents"] * item["quantity"]
        for item in items
        if item["order_id"] in delivered_ids
    )


async def payout_totals_cents(db, seller_id: str) -> dict:
    pipeline = [
        {"$match": {"seller_id": seller_id}},
        {"$group": {"_id": "$status", "amount": {"$sum": "$net_amount_cents"}}},
    ]
    with store_guard("seller_payouts.aggregate"):
        rows = await db.seller_payouts.aggregate(pipeline).to_list(None)
    return {row["_id"]: row["amount"] for row in rows}


async def balance_cents(db, seller_id: str, *, fee_rate: Decimal = PLATFORM_FEE_RATE) -> dict:
    gross = await delivered_gross_cents(db, seller_id)
    fee = fee_cents(gross, fee_rate)
    net = gross - fee

    totals = await payout_totals_cents(db, seller_id)
    pending = sum(totals.get(status, 0) for status in OUTSTANDING_STATUSES)
    paid = totals.get(PayoutStatus.COMPLETED.value, 0)

    return {
        "gross": gross,
        "fee": fee,
        "net": net,
        "pending": pending,
        "paid": paid,
        # Unclamped: refunds after a completed payout can leave this negative.
        "available": net - pending - paid,
    }


async def compute_seller_balance(
    db,
    seller_id: str,
    *,
    fee_rate: Decimal = PLATFORM_FEE_RATE,
    currency: str = CURRENCY,
) -> dict:
    cents = await balance_cents(db, seller_id, fee_rate=fee_rate)
    balance = {key: from_cents(value) for key, value in cents.items()}
    balance["seller_id"] = seller_id
    balance["currency"] = currency
    return balance


# ==============================
# Reads
# ==============================

async def get_payout(db, payout_id) -> dict:
    return await find_by_id(db.seller_payouts, parse_object_id(payout_id, "payout"), "payout")


async def list_payouts(
    db,
    *,
    seller_id: str | None = None,
    status: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[dict]:
    query = {}
    if seller_id:
        query["seller_id"] = seller_id
    if status:
        query["status"] = status

    with store_guard("seller_payouts.list"):
        return await (
            db.seller_payouts
            .find(query)
            .sort([("requested_at", -1), ("_id", -1)])
            .limit(limit)
            .to_list(limit)
        )


# ==============================
# Per-seller serialization
# ==============================
# seller_accounts holds one version counter per seller. A payout request
# reads it before computing the balance and bumps it after inserting its
# payout; a failed bump means another request interleaved.

async def _account_version(db, seller_id: str) -> int:
    with store_guard("seller_accounts.get"):
        account = await db.seller_accounts.find_one({"_id": seller_id})
    return account["version"] if account else 0


async def _claim_account_version(db, seller_id: str, version: int) -> bool:
    now = datetime.utcnow()
    with store_guard("seller_accounts.update"):
        if version == 0:
            try:
                await db.seller_accounts.insert_one({"_id": seller_id, "version": 1, "updated_at": now})
            except DuplicateKeyError:
                return False
            return True

        result = await db.seller_accounts.update_one(
            {"_id": seller_id, "version": version},
            {"$inc": {"version": 1}, "$set": {"updated_at": now}},
        )
    return result.modified_count == 1


# ==============================
# Request payout
# ==============================

async def request_payout(
    db,
    seller_id: str,
    amount,
    destination: str,
    *,
    actor: dict | None = None,
    fee_rate: Decimal = PLATFORM_FEE_RATE,
    min_amount: Decimal = MIN_PAYOUT_AMOUNT,
    currency: str = CURRENCY,
) -> dict:
    actor = actor or {"_id": seller_id, "role": ROLE_SELLER}

    destination = (destination or "").strip()
    if not destination:
        raise InvalidDestination("Payout destination (bank reference) is required")

    amount_cents = to_cents(amount)

    version = await _account_version(db, seller_id)
    balance = await balance_cents(db, seller_id, fee_rate=fee_rate)

    if amount_cents > balance["available"]:
        raise InsufficientBalance(
            "Amount exceeds available balance",
            amount=str(from_cents(amount_cents)),
            available=str(from_cents(balance["available"])),
        )

    min_cents = to_cents(min_amount)
    if amount_cents < min_cents:
        raise BelowMinimum(
            f"Minimum payout is {from_cents(min_cents)}",
            amount=str(from_cents(amount_cents)),
            minimum=str(from_cents(min_cents)),
        )

    gross = gross_for_net(amount_cents, fee_rate)
    now = datetime.utcnow()
    payout = {
        "seller_id": seller_id,
        "gross_amount_cents": gross,
        "platform_fee_cents": gross - amount_cents,
        "net_amount_cents": amount_cents,
        "currency": currency,
        "destination": destination,
        "status": PayoutStatus.PENDING.value,
        "requested_at": now,
        "processed_at": None,
        "processed_by": None,
        "provider": None,
        "provider_payout_id": None,
        "provider_payout_status": None,
        "failure_reason": None,
        "created_at": now,
        "updated_at": now,
        "version": 1,
    }
    with store_guard("seller_payouts.insert"):
        await db.seller_payouts.insert_one(payout)

    if not await _claim_account_version(db, seller_id, version):
        with store_guard("seller_payouts.discard"):
            await db.seller_payouts.delete_one({"_id": payout["_id"], "status": PayoutStatus.PENDING.value})
        raise Conflict("Another payout request for this seller was processed first", seller_id=seller_id)

    await log_audit(
        db,
        actor=actor,
        action=ACTION_PAYOUT_REQUESTED,
        entity_type=ENTITY_PAYOUT,
        entity_id=payout["_id"],
        new_values={
            "seller_id": seller_id,
            "gross_amount": str(from_cents(payout["gross_amount_cents"])),
            "platform_fee": str(from_cents(payout["platform_fee_cents"])),
            "net_amount": str(from_cents(payout["net_amount_cents"])),
            "status": payout["status"],
        },
    )
    return payout


# ==============================
# Process payout (admin)
# ==============================

async def _apply_provider_result(db, payout: dict, provider_meta: dict, actor: dict) -> dict:
    now = datetime.utcnow()
    new_status = map_provider_status(provider_meta.get("provider_payout_status"))

    changes = {
        "provider": provider_meta.get("provider"),
        "provider_payout_id": provider_meta.get("provider_payout_id"),
        "provider_payout_status": provider_meta.get("provider_payout_status"),
        "reconciled_at": now,
        "last_error": None,
    }
    if new_status == PayoutStatus.COMPLETED.value:
        changes["status"] = new_status
        changes["processed_at"] = now
    elif new_status == PayoutStatus.FAILED.value:
        changes["status"] = new_status
        changes["failed_at"] = now
        changes["failure_reason"] = f"Provider reported {provider_meta.get('provider_payout_status')}"

    try:
        updated = await guarded_update(
            db.seller_payouts,
            payout,
            entity="payout",
            expect={"status": PayoutStatus.PROCESSING.value},
            changes=changes,
        )
    except (InvalidState, Conflict):
        current = await get_payout(db, payout["_id"])
        if current["status"] != PayoutStatus.PROCESSING.value:
            return current
        raise

    if new_status != PayoutStatus.PROCESSING.value:
        await log_audit(
            db,
            actor=actor,
            action=ACTION_PAYOUT_COMPLETED if new_status == PayoutStatus.COMPLETED.value else ACTION_PAYOUT_FAILED,
            entity_type=ENTITY_PAYOUT,
            entity_id=payout["_id"],
            old_values={"status": PayoutStatus.PROCESSING.value},
            new_values={
                "status": new_status,
                "provider": changes["provider"],
                "provider_payout_id": changes["provider_payout_id"],
            },
        )
    return updated


async def _record_provider_error(db, payout: dict, exc: Exception, actor: dict) -> None:
    """
    A rejected request is final; anything else (timeouts, 5xx) leaves the
    payout processing so it can be reconciled with the same idempotency key.
    """
    now = datetime.utcnow()
    rejected = isinstance(exc, PayoutProviderError) and exc.context.get("rejected")

    if not rejected:
        logger.warning("PAYOUT_PROVIDER_UNCERTAIN payout=%s error=%s", payout["_id"], exc)
        await guarded_update(
            db.seller_payouts,
            payout,
            entity="payout",
            expect={"status": PayoutStatus.PROCESSING.value},
            changes={"last_error": str(exc)},
        )
        return

    await guarded_update(
        db.seller_payouts,
        payout,
        entity="payout",
        expect={"status": PayoutStatus.PROCESSING.value},
        changes={
            "status": PayoutStatus.FAILED.value,
            "failure_reason": str(exc),
            "failed_at": now,
        },
    )
    await log_audit(
        db,
        actor=actor,
        action=ACTION_PAYOUT_FAILED,
        entity_type=ENTITY_PAYOUT,
        entity_id=payout["_id"],
        old_values={"status": PayoutStatus.PROCESSING.value},
        new_values={"status": PayoutStatus.FAILED.value, "error": str(exc)},
    )


async def _execute(db, payout: dict, actor: dict, executor) -> dict:
    try:
        provider_meta = await asyncio.to_thread(executor, payout=payout)
    except Exception as e:
        await _record_provider_error(db, payout, e, actor)
        raise
    return await _apply_provider_result(db, payout, provider_meta, actor)


async def process_payout(db, payout_id, actor: dict, *, executor=None, fetcher=None) -> dict:
    """
    pending -> processing -> completed | failed.

    Completed payouts are returned untouched; processing payouts are
    re-queried, never paid a second time.
    """
    executor = executor or execute_bank_payout
    payout = await get_payout(db, payout_id)
    status = payout["status"]

    if status == PayoutStatus.COMPLETED.value:
        return payout
    if status == PayoutStatus.PROCESSING.value:
        return await reconcile_payout(db, payout["_id"], actor, executor=executor, fetcher=fetcher)
    if status == PayoutStatus.FAILED.value:
        raise InvalidState(
            "Payout failed; the seller must request a new payout",
            precondition="status_is_pending",
            current=status,
        )

    try:
        claimed = await guarded_update(
            db.seller_payouts,
            payout,
            entity="payout",
            expect={"status": PayoutStatus.PENDING.value},
            changes={
                "status": PayoutStatus.PROCESSING.value,
                "processed_by": actor["_id"],
                "processing_started_at": datetime.utcnow(),
            },
        )
    except (InvalidState, Conflict):
        current = await get_payout(db, payout["_id"])
        if current["status"] in {PayoutStatus.PROCESSING.value, PayoutStatus.COMPLETED.value}:
            return current
        raise

    await log_audit(
        db,
        actor=actor,
        action=ACTION_PAYOUT_PROCESSING,
        entity_type=ENTITY_PAYOUT,
        entity_id=payout["_id"],
        old_values={"status": PayoutStatus.PENDING.value},
        new_values={"status": PayoutStatus.PROCESSING.value},
    )

    return await _execute(db, claimed, actor, executor)


async def reconcile_payout(db, payout_id, actor: dict, *, executor=None, fetcher=None) -> dict:
    """
    Re-query the provider for a processing payout. Without a provider id the
    original request is replayed under the same idempotency key.
    """
    executor = executor or execute_bank_payout
    fetcher = fetcher or fetch_payout_status

    payout = await get_payout(db, payout_id)
    if payout["status"] != PayoutStatus.PROCESSING.value:
        return payout

    if not payout.get("provider_payout_id"):
        return await _execute(db, payout, actor, executor)

    provider_meta = await asyncio.to_thread(
        fetcher,
        provider=payout.get("provider"),
        provider_payout_id=payout["provider_payout_id"],
    )
    return await _apply_provider_result(db, payout, provider_meta, actor)


# ==============================
# Manual failure (admin)
# ==============================

async def fail_payout(db, payout_id, actor: dict, reason: str) -> dict:
    """
    Mark an outstanding payout failed by hand, e.g. a wrong bank reference
    the provider will never reject. Its funds become available again.
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidState("Failure reason required", precondition="reason_present")

    payout = await get_payout(db, payout_id)
    current = payout["status"]
    if current not in OUTSTANDING_STATUSES:
        raise InvalidState(
            f"Payout is {current} and cannot be failed",
            precondition="status_is_outstanding",
            current=current,
        )

    failed = await guarded_update(
        db.seller_payouts,
        payout,
        entity="payout",
        expect={"status": current},
        changes={
            "status": PayoutStatus.FAILED.value,
            "failure_reason": reason,
            "failed_at": datetime.utcnow(),
            "processed_by": actor["_id"],
        },
    )

    await log_audit(
        db,
        actor=actor,
        action=ACTION_PAYOUT_FAILED,
        entity_type=ENTITY_PAYOUT,
        entity_id=payout["_id"],
        old_values={"status": current},
        new_values={"status": PayoutStatus.FAILED.value, "reason": reason},
    )
    return failed
