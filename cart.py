"""
Server side cart.

Rows live in the ``cart`` collection, one per (user_id, product_id, size),
backed by a unique index. Adding is a single ``$inc`` upsert so concurrent
adds of the same line converge on one row with the summed quantity.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import find_products
from config import CART_MAX_QUANTITY_PER_LINE
from database import now, serialize_doc, to_object_id
from errors import InvalidRequest, NotFound, ShopError, StoreUnavailable
from schemas import Cart as CartSchema

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ("id", "name", "price", "image_url", "sizes")
UPSERT_ATTEMPTS = 5


def _product_view(product: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not product:
        return None
    return {k: product.get(k) for k in PRODUCT_FIELDS}


def enrich(db: Database, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    products = find_products(db, [r["product_id"] for r in rows])
    items = []
    for row in rows:
        row = serialize_doc(row)
        row["product"] = _product_view(products.get(row["product_id"]))
        items.append(row)
    return items


def list_cart(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return enrich(db, list(db["cart"].find({"user_id": user_id})))


def _check_product(db: Database, product_id: str, size: Optional[str]) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": to_object_id(product_id, "product_id")})
    if not product:
        raise NotFound("Product not found", product_id=product_id)
    sizes = product.get("sizes") or []
    if size is not None and sizes and size not in sizes:
        raise InvalidRequest("Size not available", fields={"size": f"must be one of {', '.join(sizes)}"})
    return product


def _increment(db: Database, user_id: str, product_id: str, size: Optional[str], quantity: int,
               cap: int = CART_MAX_QUANTITY_PER_LINE) -> Dict[str, Any]:
    key = CartSchema(user_id=user_id, product_id=product_id, size=size).model_dump(exclude={"quantity"})
    stamp = now()
    update = {"$inc": {"quantity": quantity}, "$set": {"updated_at": stamp}, "$setOnInsert": {"created_at": stamp}}
    for _ in range(UPSERT_ATTEMPTS):
        try:
            row = db["cart"].find_one_and_update(key, update, upsert=True, return_document=ReturnDocument.AFTER)
        except DuplicateKeyError:
            # Lost an upsert race: the row exists now, so a plain increment lands on it.
            # None means it was deleted again in between; go round and upsert
            row = db["cart"].find_one_and_update(key, update, return_document=ReturnDocument.AFTER)
        if row is not None:
            break
    else:
        raise StoreUnavailable("Could not save cart item")
    if row["quantity"] > cap:
        clamped = db["cart"].find_one_and_update(
            {"_id": row["_id"], "quantity": {"$gt": cap}},
            {"$set": {"quantity": cap}},
            return_document=ReturnDocument.AFTER,
        )
        row = clamped or db["cart"].find_one({"_id": row["_id"]}) or row
    return row


def add_item(db: Database, user_id: str, product_id: str, size: Optional[str] = None, quantity: int = 1) -> Dict[str, Any]:
    """Add ``quantity`` of a product+size, incrementing the existing line if present."""
    if quantity < 1:
        raise InvalidRequest("Quantity must be at least 1", fields={"quantity": "must be >= 1"})
    _check_product(db, product_id, size)
    row = _increment(db, user_id, product_id, size, quantity)
    return enrich(db, [row])[0]


def update_quantity(db: Database, user_id: str, row_id: str, quantity: int) -> Dict[str, Any]:
    if quantity < 1:
        raise InvalidRequest("Quantity must be at least 1, remove the item instead",
                             fields={"quantity": "must be >= 1"})
    if quantity > CART_MAX_QUANTITY_PER_LINE:
        raise InvalidRequest("Quantity too large",
                             fields={"quantity": f"must be <= {CART_MAX_QUANTITY_PER_LINE}"})
    row = db["cart"].find_one_and_update(
        {"_id": to_object_id(row_id, "cart_item_id"), "user_id": user_id},
        {"$set": {"quantity": quantity, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not row:
        raise NotFound("Cart item not found")
    return enrich(db, [row])[0]


def remove_item(db: Database, user_id: str, row_id: str) -> None:
    db["cart"].delete_one({"_id": to_object_id(row_id, "cart_item_id"), "user_id": user_id})


def clear_cart(db: Database, user_id: str, lines: Optional[Iterable[Tuple[str, Optional[str]]]] = None) -> int:
    """Delete the user's cart rows, or only the given (product_id, size) lines."""
    query: Dict[str, Any] = {"user_id": user_id}
    if lines is not None:
        lines = list(lines)
        if not lines:
            return 0
        query["$or"] = [{"product_id": product_id, "size": size} for product_id, size in lines]
    return db["cart"].delete_many(query).deleted_count


def sync_cart(db: Database, user_id: str, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge a guest cart into the user's cart.

    Quantities for a line that already exists are summed and clamped to the
    per-line maximum. Entries are applied independently: one bad entry is
    reported back and does not stop the rest.
    """
    results = []
    for entry in entries:
        product_id, size, quantity = entry["product_id"], entry.get("size"), entry["quantity"]
        result = {"product_id": product_id, "size": size}
        try:
            _check_product(db, product_id, size)
            row = _increment(db, user_id, product_id, size, quantity)
        except ShopError as exc:
            logger.warning("Cart sync entry %s/%s rejected for user %s: %s", product_id, size, user_id, exc.message)
            result.update(status="failed", error=exc.message)
        except PyMongoError as exc:
            logger.warning("Cart sync entry %s/%s failed for user %s: %s", product_id, size, user_id, exc)
            result.update(status="failed", error="Could not save cart item")
        except Exception:
            logger.exception("Cart sync entry %s/%s failed for user %s", product_id, size, user_id)
            result.update(status="failed", error="Could not save cart item")
        else:
            result.update(status="merged", id=str(row["_id"]), quantity=row["quantity"])
        results.append(result)
    merged = sum(1 for r in results if r["status"] == "merged")
    logger.info("Cart sync for user %s: %d merged, %d failed", user_id, merged, len(results) - merged)
    return {"items": list_cart(db, user_id), "results": results}
