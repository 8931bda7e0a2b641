"""
Catalog service: products and collections.

Reads go through the tagged cache; every write invalidates the tags of the
entity it touched, so a read after a write always reaches the store.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from cache import TaggedCache
from config import CACHE_TTL_COLLECTIONS, CACHE_TTL_PRODUCT, CACHE_TTL_PRODUCTS
from database import create_document, now, serialize_doc, to_object_id
from errors import Conflict, InvalidRequest, NotFound, fields_from
from schemas import Collection as CollectionSchema, Product as ProductSchema

logger = logging.getLogger(__name__)


def product_tags(product_id: str) -> List[str]:
    return ["products", f"product:{product_id}"]


def collection_tags(collection_id: str) -> List[str]:
    return ["collections", f"collection:{collection_id}"]


# Products

def list_products(db: Database, cache: TaggedCache) -> List[Dict[str, Any]]:
    return cache.get_or_set(
        "products:all", CACHE_TTL_PRODUCTS, ["products"],
        lambda: [serialize_doc(p) for p in db["product"].find().sort("created_at", -1)],
    )


def get_product(db: Database, cache: TaggedCache, product_id: str) -> Dict[str, Any]:
    oid = to_object_id(product_id, "product_id")

    def load():
        product = db["product"].find_one({"_id": oid})
        if not product:
            raise NotFound("Product not found")
        return serialize_doc(product)

    return cache.get_or_set(f"products:{product_id}", CACHE_TTL_PRODUCT, [f"product:{product_id}"], load)


def find_products(db: Database, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    """Uncached bulk lookup keyed by id, used to enrich cart and wishlist rows."""
    oids = [to_object_id(pid, "product_id") for pid in set(product_ids)]
    if not oids:
        return {}
    return {str(p["_id"]): serialize_doc(p) for p in db["product"].find({"_id": {"$in": oids}})}


def _check_collection(db: Database, collection_id: Optional[str]) -> None:
    if collection_id is None:
        return
    if not db["collection"].find_one({"_id": to_object_id(collection_id, "collection_id")}):
        raise InvalidRequest("Unknown collection", fields={"collection_id": "does not exist"})


def create_product(db: Database, cache: TaggedCache, data: Dict[str, Any]) -> Dict[str, Any]:
    product = ProductSchema(**data)
    _check_collection(db, product.collection_id)
    product_id = create_document("product", product, database=db)
    cache.invalidate(*product_tags(product_id))
    if product.collection_id:
        cache.invalidate(f"collection:{product.collection_id}")
    logger.info("Product %s created", product_id)
    return serialize_doc(db["product"].find_one({"_id": to_object_id(product_id)}))


def update_product(db: Database, cache: TaggedCache, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    oid = to_object_id(product_id, "product_id")
    if not changes:
        raise InvalidRequest("No fields to update")
    existing = db["product"].find_one({"_id": oid})
    if not existing:
        raise NotFound("Product not found")
    if "collection_id" in changes:
        _check_collection(db, changes["collection_id"])
    # Validate the merged document before writing it
    merged = {k: v for k, v in existing.items() if k in ProductSchema.model_fields}
    merged.update(changes)
    try:
        ProductSchema(**merged)
    except ValidationError as exc:
        raise InvalidRequest("Invalid product", fields=fields_from(exc))
    changes = dict(changes, updated_at=now())
    db["product"].update_one({"_id": oid}, {"$set": changes})
    cache.invalidate(*product_tags(product_id))
    for collection_id in {existing.get("collection_id"), changes.get("collection_id")} - {None}:
        cache.invalidate(f"collection:{collection_id}")
    return serialize_doc(db["product"].find_one({"_id": oid}))


def delete_product(db: Database, cache: TaggedCache, product_id: str) -> None:
    oid = to_object_id(product_id, "product_id")
    product = db["product"].find_one_and_delete({"_id": oid})
    if not product:
        raise NotFound("Product not found")
    cache.invalidate(*product_tags(product_id))
    if product.get("collection_id"):
        cache.invalidate(f"collection:{product['collection_id']}")
    logger.info("Product %s deleted", product_id)


# Collections

def list_collections(db: Database, cache: TaggedCache) -> List[Dict[str, Any]]:
    return cache.get_or_set(
        "collections:all", CACHE_TTL_COLLECTIONS, ["collections"],
        lambda: [serialize_doc(c) for c in db["collection"].find().sort("name", 1)],
    )


def get_collection(db: Database, cache: TaggedCache, collection_id: str) -> Dict[str, Any]:
    oid = to_object_id(collection_id, "collection_id")

    def load():
        collection = db["collection"].find_one({"_id": oid})
        if not collection:
            raise NotFound("Collection not found")
        collection = serialize_doc(collection)
        collection["products"] = [serialize_doc(p) for p in db["product"].find({"collection_id": collection_id})]
        return collection

    return cache.get_or_set(f"collections:{collection_id}", CACHE_TTL_COLLECTIONS,
                            [f"collection:{collection_id}"], load)


def create_collection(db: Database, cache: TaggedCache, data: Dict[str, Any]) -> Dict[str, Any]:
    collection = CollectionSchema(**data)
    if db["collection"].find_one({"slug": collection.slug}):
        raise Conflict("Slug already taken", fields={"slug": "must be unique"})
    try:
        collection_id = create_document("collection", collection, database=db)
    except DuplicateKeyError:
        raise Conflict("Slug already taken", fields={"slug": "must be unique"})
    cache.invalidate("collections")
    return serialize_doc(db["collection"].find_one({"_id": to_object_id(collection_id)}))


def update_collection(db: Database, cache: TaggedCache, collection_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    oid = to_object_id(collection_id, "collection_id")
    if not db["collection"].find_one({"_id": oid}):
        raise NotFound("Collection not found")
    if "slug" in changes and db["collection"].find_one({"slug": changes["slug"], "_id": {"$ne": oid}}):
        raise Conflict("Slug already taken", fields={"slug": "must be unique"})
    if changes:
        db["collection"].update_one({"_id": oid}, {"$set": dict(changes, updated_at=now())})
    cache.invalidate(*collection_tags(collection_id))
    return serialize_doc(db["collection"].find_one({"_id": oid}))


def delete_collection(db: Database, cache: TaggedCache, collection_id: str) -> None:
    oid = to_object_id(collection_id, "collection_id")
    if not db["collection"].find_one_and_delete({"_id": oid}):
        raise NotFound("Collection not found")
    detached = [str(p["_id"]) for p in db["product"].find({"collection_id": collection_id}, {"_id": 1})]
    if detached:
        db["product"].update_many({"collection_id": collection_id}, {"$set": {"collection_id": None}})
        cache.invalidate("products", *(f"product:{pid}" for pid in detached))
    cache.invalidate(*collection_tags(collection_id))
    logger.info("Collection %s deleted, %d products detached", collection_id, len(detached))


# Seed helpers (idempotent)

def _seed_payload():
    return [
        {
            "name": "Summer Essentials",
            "slug": "summer-essentials",
            "image_url": "https://images.unsplash.com/photo-1523381210434-271e8be1f52b?q=80&w=1000&auto=format&fit=crop",
            "description": "Curated pieces for the warmer days ahead.",
        },
        {
            "name": "Modern Tailoring",
            "slug": "modern-tailoring",
            "image_url": "https://images.unsplash.com/photo-1507679799987-c73779587ccf?q=80&w=1000&auto=format&fit=crop",
            "description": "Sharp silhouettes for the contemporary professional.",
        },
        {
            "name": "Evening Wear",
            "slug": "evening-wear",
            "image_url": "https://images.unsplash.com/photo-1566174053879-31528523f8ae?q=80&w=1000&auto=format&fit=crop",
            "description": "Elegant attire for your most memorable nights.",
        },
        {
            "name": "Accessories",
            "slug": "accessories",
            "image_url": "https://images.unsplash.com/photo-1576053139778-7e32f2ae3cfd?q=80&w=1000&auto=format&fit=crop",
            "description": "The finishing touches that make the outfit.",
        },
    ]


def seed_collections(db: Database, cache: TaggedCache) -> int:
    created = 0
    for payload in _seed_payload():
        if db["collection"].find_one({"slug": payload["slug"]}):
            continue
        create_document("collection", payload, database=db)
        created += 1
    if created:
        cache.invalidate("collections")
        logger.info("Seeded %d collections", created)
    return created
