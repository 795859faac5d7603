"""
Append-only audit trail.

Only two operations exist on ``audit_logs``: ``log_audit`` inserts and
``list_audit_logs`` reads. Nothing in the engine updates or deletes an entry.
"""

import logging
from datetime import datetime

from config.constants import DEFAULT_LIST_LIMIT
from utils.mongo import store_guard

logger = logging.getLogger(__name__)


async def log_audit(
    db,
    *,
    actor: dict,
    action: str,
    entity_type: str,
    entity_id,
    old_values: dict | None = None,
    new_values: dict | None = None,
):
    """
    Record a committed mutation. Runs after the primary write; a failure here
    is logged and never undoes the mutation.
    """
    entry = {
        "actor_id": actor.get("_id"),
        "actor_role": actor.get("role"),
        "action": action,
        "entity_type": entity_type,
        "entity_id": str(entity_id) if entity_id is not None else None,
        "old_values": old_values,
        "new_values": new_values,
        "created_at": datetime.utcnow(),
    }

    try:
        result = await db.audit_logs.insert_one(entry)
    except Exception:
        logger.exception(
            "AUDIT_WRITE_FAILED action=%s entity=%s:%s actor=%s",
            action,
            entity_type,
            entity_id,
            actor.get("_id"),
        )
        return None

    return result.inserted_id


async def list_audit_logs(
    db,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[dict]:
    query = {}
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type
    if entity_id:
        query["entity_id"] = entity_id
    if actor_id:
        query["actor_id"] = actor_id

    with store_guard("audit_logs.list"):
        return await (
            db.audit_logs
            .find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .limit(limit)
            .to_list(limit)
        )
