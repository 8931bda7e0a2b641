import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from cart import enrich
from database import now, to_object_id
from errors import NotFound
from schemas import Wishlist as WishlistSchema

logger = logging.getLogger(__name__)


def list_wishlist(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return enrich(db, list(db["wishlist"].find({"user_id": user_id}).sort("created_at", -1)))


def is_in_wishlist(db: Database, user_id: str, product_id: str) -> bool:
    return db["wishlist"].find_one({"user_id": user_id, "product_id": product_id}) is not None


def toggle(db: Database, user_id: str, product_id: str) -> Tuple[str, Optional[Dict[str, Any]]]:
    """Flip membership of (user, product); returns ``("added", row)`` or ``("removed", None)``."""
    if not db["product"].find_one({"_id": to_object_id(product_id, "product_id")}):
        raise NotFound("Product not found")
    if db["wishlist"].delete_one({"user_id": user_id, "product_id": product_id}).deleted_count:
        return "removed", None
    try:
        row = WishlistSchema(user_id=user_id, product_id=product_id).model_dump()
        db["wishlist"].insert_one(dict(row, created_at=now()))
    except DuplicateKeyError:
        # A concurrent toggle added it first; the pair is still a member exactly once
        logger.debug("Wishlist row for %s/%s already present", user_id, product_id)
    row = db["wishlist"].find_one({"user_id": user_id, "product_id": product_id})
    if row is None:
        return "removed", None
    return "added", enrich(db, [row])[0]
