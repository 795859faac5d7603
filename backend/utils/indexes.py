from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

from utils.idempotency import IDEMPOTENCY_TTL_SECONDS


def _normalize_key_pairs(keys):
    return [(k, v) for k, v in keys]


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create index safely.
    If Mongo reports IndexOptionsConflict/IndexKeySpecsConflict for same key pattern,
    drop the conflicting index and recreate with desired options.
    """
    desired_key = _normalize_key_pairs(keys)
    desired_name = kwargs.get("name")
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in {85, 86}:
            raise

        conflicting_names = []
        async for idx in collection.list_indexes():
            idx_key = _normalize_key_pairs(list(idx.get("key", {}).items()))
            if idx_key == desired_key:
                idx_name = idx.get("name")
                if idx_name and idx_name != desired_name:
                    conflicting_names.append(idx_name)

        for idx_name in conflicting_names:
            await collection.drop_index(idx_name)

        await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    # Orders
    await _create_index_safe(
        db.orders,
        [("buyer_id", ASCENDING), ("created_at", DESCENDING)],
        name="orders_buyer_created_at_idx",
    )
    await _create_index_safe(
        db.orders,
        [("status", ASCENDING), ("created_at", DESCENDING)],
        name="orders_status_created_at_idx",
    )

    # Order items (seller aggregation)
    await _create_index_safe(
        db.order_items,
        [("seller_id", ASCENDING), ("order_id", ASCENDING)],
        name="order_items_seller_order_idx",
    )
    await _create_index_safe(
        db.order_items,
        [("order_id", ASCENDING)],
        name="order_items_order_idx",
    )

    # Refunds
    await _create_index_safe(
        db.refunds,
        [("order_id", ASCENDING), ("status", ASCENDING)],
        name="refunds_order_status_idx",
    )
    await _create_index_safe(
        db.refunds,
        [("status", ASCENDING), ("created_at", DESCENDING)],
        name="refunds_status_created_at_idx",
    )

    # Returns
    await _create_index_safe(
        db.returns,
        [("order_id", ASCENDING), ("status", ASCENDING)],
        name="returns_order_status_idx",
    )

    # Disputes
    await _create_index_safe(
        db.disputes,
        [("order_id", ASCENDING), ("seller_id", ASCENDING), ("status", ASCENDING)],
        name="disputes_order_seller_status_idx",
    )

    # Idempotency
    await _create_index_safe(
        db.idempotency_keys,
        [("key", ASCENDING), ("scope", ASCENDING)],
        name="idempotency_key_scope_unique",
        unique=True,
    )
    await _create_index_safe(
        db.idempotency_keys,
        [("created_at", ASCENDING)],
        name="idempotency_ttl_idx",
        expireAfterSeconds=IDEMPOTENCY_TTL_SECONDS,
    )

    # Seller payouts
    await _create_index_safe(
        db.seller_payouts,
        [("status", ASCENDING), ("requested_at", DESCENDING)],
        name="seller_payouts_status_requested_at_idx",
    )
    await _create_index_safe(
        db.seller_payouts,
        [("seller_id", ASCENDING), ("status", ASCENDING)],
        name="seller_payouts_seller_status_idx",
    )
    await _create_index_safe(
        db.seller_payouts,
        [("provider_payout_id", ASCENDING)],
        name="seller_payouts_provider_payout_idx",
        sparse=True,
    )

    # Audit log
    await _create_index_safe(
        db.audit_logs,
        [("entity_type", ASCENDING), ("entity_id", ASCENDING), ("created_at", DESCENDING)],
        name="audit_logs_entity_created_at_idx",
    )
    await _create_index_safe(
        db.audit_logs,
        [("action", ASCENDING), ("created_at", DESCENDING)],
        name="audit_logs_action_created_at_idx",
    )
