"""
Address book.

The user's default address is a single ``default_address_id`` field on the
user document. Setting it is one atomic update, so no reader can ever see two
defaults for the same user; ``is_default`` on each address is derived from it.
Deleting the default address leaves the user without one.
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError
from pymongo.database import Database

from database import create_document, now, serialize_doc, to_object_id
from errors import Forbidden, InvalidRequest, NotFound, fields_from
from schemas import Address as AddressSchema

logger = logging.getLogger(__name__)


def _default_id(db: Database, user_id: str):
    user = db["user"].find_one({"_id": to_object_id(user_id)}, {"default_address_id": 1})
    return (user or {}).get("default_address_id")


def _set_default(db: Database, user_id: str, address_id: str) -> None:
    db["user"].update_one({"_id": to_object_id(user_id)},
                          {"$set": {"default_address_id": address_id, "updated_at": now()}})


def _public(doc: Dict[str, Any], default_id) -> Dict[str, Any]:
    address = serialize_doc(doc)
    address["is_default"] = address["id"] == default_id
    return address


def owned_address(db: Database, user_id: str, address_id: str) -> Dict[str, Any]:
    doc = db["address"].find_one({"_id": to_object_id(address_id, "address_id")})
    if not doc:
        raise NotFound("Address not found")
    if doc["user_id"] != user_id:
        raise Forbidden("Unauthorized")
    return doc


def list_addresses(db: Database, user_id: str) -> List[Dict[str, Any]]:
    default_id = _default_id(db, user_id)
    docs = db["address"].find({"user_id": user_id}).sort("created_at", 1)
    addresses = [_public(d, default_id) for d in docs]
    return sorted(addresses, key=lambda a: not a["is_default"])


def get_address(db: Database, user_id: str, address_id: str) -> Dict[str, Any]:
    return _public(owned_address(db, user_id, address_id), _default_id(db, user_id))


def create_address(db: Database, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    make_default = bool(data.pop("is_default", False))
    address = AddressSchema(user_id=user_id, **data)
    address_id = create_document("address", address, database=db)
    if make_default:
        _set_default(db, user_id, address_id)
    return get_address(db, user_id, address_id)


def update_address(db: Database, user_id: str, address_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    existing = owned_address(db, user_id, address_id)
    changes = dict(changes)
    make_default = bool(changes.pop("is_default", False))
    if changes:
        merged = {k: v for k, v in existing.items() if k in AddressSchema.model_fields}
        merged.update(changes)
        try:
            AddressSchema(**merged)
        except ValidationError as exc:
            raise InvalidRequest("Invalid address", fields=fields_from(exc))
        db["address"].update_one({"_id": existing["_id"]}, {"$set": dict(changes, updated_at=now())})
    if make_default:
        _set_default(db, user_id, address_id)
    return get_address(db, user_id, address_id)


def delete_address(db: Database, user_id: str, address_id: str) -> None:
    existing = owned_address(db, user_id, address_id)
    db["address"].delete_one({"_id": existing["_id"]})
    # Only clears the pointer if it still names this address
    db["user"].update_one({"_id": to_object_id(user_id), "default_address_id": address_id},
                          {"$set": {"default_address_id": None}})
    logger.info("Address %s deleted for user %s", address_id, user_id)
