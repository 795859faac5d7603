from datetime import datetime
from pymongo.errors import DuplicateKeyError

from utils.mongo import store_guard

IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24  # 24 hours
IN_PROGRESS_STALE_SECONDS = 60 * 10     # 10 minutes

IN_PROGRESS_RESPONSE = {
    "message": "Request already in progress",
    "status": "processing",
}


async def reserve_idempotency_key(
    *,
    db,
    key: str,
    scope: str,
):
    """
    Reserve ``key`` within ``scope``.

    Returns None when the caller should do the work, otherwise the stored
    response of a completed request (or an in-progress marker).
    A reservation older than IN_PROGRESS_STALE_SECONDS is expired and retaken.
    """
    with store_guard("idempotency_keys.get"):
        existing = await db.idempotency_keys.find_one({"key": key, "scope": scope})

    if existing:
        if existing.get("status") == "completed":
            return existing.get("response")

        created_at = existing.get("created_at")
        age_seconds = (
            (datetime.utcnow() - created_at).total_seconds()
            if created_at else 0
        )
        if age_seconds <= IN_PROGRESS_STALE_SECONDS:
            return IN_PROGRESS_RESPONSE

        with store_guard("idempotency_keys.expire"):
            await db.idempotency_keys.delete_one({"_id": existing["_id"]})

    try:
        with store_guard("idempotency_keys.insert"):
            await db.idempotency_keys.insert_one({
                "key": key,
                "scope": scope,
                "status": "reserved",
                "response": None,
                "created_at": datetime.utcnow(),
            })
    except DuplicateKeyError:
        # Concurrent request won the race; return canonical response/state.
        concurrent = await db.idempotency_keys.find_one({"key": key, "scope": scope})
        if concurrent and concurrent.get("status") == "completed":
            return concurrent.get("response")
        return IN_PROGRESS_RESPONSE
    return None


async def complete_idempotency_key(
    *,
    db,
    key: str,
    scope: str,
    response: dict,
):
    with store_guard("idempotency_keys.complete"):
        await db.idempotency_keys.update_one(
            {"key": key, "scope": scope},
            {
                "$set": {
                    "status": "completed",
                    "response": response,
                    "completed_at": datetime.utcnow(),
                }
            },
        )


async def clear_idempotency_key(
    *,
    db,
    key: str,
    scope: str,
):
    """
    Drop a reservation whose request failed so the client can retry.
    """
    with store_guard("idempotency_keys.clear"):
        await db.idempotency_keys.delete_one({"key": key, "scope": scope})
