import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, ExecutionTimeout, WriteConcernError

from utils.errors import Conflict, InvalidState, NotFound, StoreUnavailable
from utils.money import from_cents

logger = logging.getLogger(__name__)

_OUTAGE_ERRORS = (ConnectionFailure, ExecutionTimeout, WriteConcernError)


# ==============================
# Store outage translation
# ==============================

@contextmanager
def store_guard(operation: str):
    """
    Wrap a store round-trip; outages surface as a retryable StoreUnavailable.
    """
    try:
        yield
    except _OUTAGE_ERRORS as e:
        logger.warning("STORE_UNAVAILABLE op=%s error=%s", operation, e)
        raise StoreUnavailable(f"Store unavailable during {operation}", operation=operation) from e


async def find_by_id(collection, doc_id, entity: str) -> dict:
    with store_guard(f"{entity}.get"):
        doc = await collection.find_one({"_id": doc_id})
    if not doc:
        raise NotFound(f"{entity.capitalize()} not found", entity=entity, id=str(doc_id))
    return doc


# ==============================
# Optimistic concurrency
# ==============================

async def guarded_update(
    collection,
    doc: dict,
    *,
    entity: str,
    expect: dict | None = None,
    changes: dict,
) -> dict:
    """
    Apply ``changes`` to ``doc`` only if the stored copy still has the same
    version and still matches ``expect``. Returns the updated document.

    On a miss the stored copy is re-read to tell the caller why:
    NotFound (gone), InvalidState (an expected field moved on) or
    Conflict (same fields, newer version).
    """
    expect = expect or {}
    query = {"_id": doc["_id"], "version": doc.get("version", 0)}
    query.update(expect)

    update = {
        "$set": {**changes, "updated_at": datetime.utcnow()},
        "$inc": {"version": 1},
    }

    with store_guard(f"{entity}.update"):
        updated = await collection.find_one_and_update(
            query,
            update,
            return_document=ReturnDocument.AFTER,
        )
    if updated is not None:
        return updated

    with store_guard(f"{entity}.get"):
        current = await collection.find_one({"_id": doc["_id"]})
    if current is None:
        raise NotFound(f"{entity.capitalize()} not found", entity=entity, id=str(doc["_id"]))

    for field, value in expect.items():
        if current.get(field) != value:
            raise InvalidState(
                f"{entity.capitalize()} {field} is no longer {value!r}",
                precondition=f"{field}_is_{value}",
                entity=entity,
                id=str(doc["_id"]),
                current=_plain(current.get(field)),
            )

    raise Conflict(
        f"{entity.capitalize()} was modified by another request",
        entity=entity,
        id=str(doc["_id"]),
        expected_version=doc.get("version", 0),
        current_version=current.get("version", 0),
    )


# ==============================
# Serialization
# ==============================

def _plain(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize_doc(doc: dict) -> dict:
    """
    Mongo document -> JSON-ready dict.
    ``_id`` becomes ``id``; ``*_cents`` integers become exact decimal
    strings without the suffix.
    """
    if not doc:
        return doc

    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = _plain(v)
        elif k.endswith("_cents") and isinstance(v, int):
            out[k[: -len("_cents")]] = str(from_cents(v))
        else:
            out[k] = _plain(v)
    return out


def serialize_docs(docs):
    return [serialize_doc(d) for d in docs]
