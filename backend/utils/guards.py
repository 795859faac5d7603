from bson import ObjectId
from bson.errors import InvalidId

from config.constants import ROLE_BUYER, ROLE_SELLER
from utils.errors import NotFound

# -------------------------------
# ObjectId Guard
# -------------------------------

def parse_object_id(value, name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"Invalid {name}", entity=name, id=str(value))


# -------------------------------
# Ownership Guards
# -------------------------------
# Callers outside their own scope get NotFound, never a hint that the
# record exists.

def assert_buyer_owns(actor: dict, doc: dict, entity: str = "order", field: str = "buyer_id"):
    if actor.get("role") == ROLE_BUYER and doc.get(field) != actor["_id"]:
        raise NotFound(f"{entity.capitalize()} not found", entity=entity, id=str(doc["_id"]))


def assert_seller_owns(actor: dict, seller_ids, entity: str, entity_id):
    if actor.get("role") == ROLE_SELLER and actor["_id"] not in set(seller_ids):
        raise NotFound(f"{entity.capitalize()} not found", entity=entity, id=str(entity_id))
