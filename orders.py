"""
Order creation and status management.

An order and its line items are one document, so it is either stored whole or
not at all. The payment confirmation id is unique across orders and doubles as
the idempotency key for order submission.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from addresses import owned_address
from cache import TaggedCache
from cart import clear_cart
from catalog import find_products
from config import CACHE_TTL_ADMIN_ORDERS, CACHE_TTL_USER_ORDERS
from database import now, serialize_doc, to_object_id
from errors import (Conflict, InvalidRequest, InvalidStatusTransition, NotFound, OrderPersistenceError,
                    PaymentNotConfirmed)
from payments import PaymentGateway
from schemas import Order as OrderSchema, OrderItem as OrderItemSchema, PaymentReconciliation

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"paid", "cancelled"},
    "paid": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}

USER_ORDERS_LIMIT = 50
ADMIN_ORDERS_LIMIT = 100


def user_orders_tag(user_id: str) -> str:
    return f"orders:user:{user_id}"


def _public(order: Dict[str, Any], products: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    order = serialize_doc(order)
    for item in order.get("items", []):
        product = products.get(item["product_id"])
        item["product"] = {"id": product["id"], "name": product.get("name"),
                           "image_url": product.get("image_url")} if product else None
    return order


def _public_many(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    products = find_products(db, [i["product_id"] for o in orders for i in o.get("items", [])])
    return [_public(o, products) for o in orders]


def _snapshot_line(item: Dict[str, Any], products: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    product = products[item["product_id"]]
    line = OrderItemSchema(
        product_id=item["product_id"],
        name=product.get("name"),
        size=item.get("size"),
        quantity=item["quantity"],
        price=item["price"],
    )
    return line.model_dump()


def _record_reconciliation(db: Database, user_id: str, payload: Dict[str, Any], error: Exception) -> Optional[str]:
    record = PaymentReconciliation(
        user_id=user_id,
        payment_id=payload["payment_id"],
        total_amount=payload["total_amount"],
        items=payload["items"],
        address_id=payload.get("address_id"),
        error=repr(error),
    ).model_dump()
    record["created_at"] = now()
    try:
        return str(db["payment_reconciliation"].insert_one(record).inserted_id)
    except PyMongoError:
        logger.critical("Could not record reconciliation for captured payment %s (user %s)",
                        payload["payment_id"], user_id, exc_info=True)
        return None


def _check_references(db: Database, user_id: str, payload: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    products = find_products(db, [i["product_id"] for i in payload["items"]])
    missing = sorted({i["product_id"] for i in payload["items"]} - set(products))
    if missing:
        raise InvalidRequest("Unknown products", fields={"items": f"unknown product ids: {', '.join(missing)}"})
    if payload.get("address_id"):
        owned_address(db, user_id, payload["address_id"])
    return products


def create_order(db: Database, cache: TaggedCache, gateway: PaymentGateway, user_id: str,
                 payload: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Persist an order for a confirmed payment.

    Returns ``(order, created)``; ``created`` is False when an order already
    exists for the payment id, in which case that order is returned as is.
    Once the payment has succeeded, any failure to store the order (including
    a product or address that is no longer valid) is queued for
    reconciliation and raised as ``OrderPersistenceError``.
    """
    payment_id = payload["payment_id"]
    if not payload["items"]:
        raise InvalidRequest("Order must contain at least one item", fields={"items": "must not be empty"})

    existing = db["order"].find_one({"payment_id": payment_id})
    if existing:
        if existing["user_id"] != user_id:
            raise Conflict("Payment already used for another order")
        return _public_many(db, [existing])[0], False

    intent = gateway.retrieve_intent(payment_id)
    if not intent.succeeded:
        _check_references(db, user_id, payload)
        raise PaymentNotConfirmed(f"Payment is {intent.status}", payment_status=intent.status)

    try:
        products = _check_references(db, user_id, payload)
        items = [_snapshot_line(item, products) for item in payload["items"]]
        order = OrderSchema(
            user_id=user_id,
            items=items,
            total_amount=payload["total_amount"],
            status="paid",
            payment_id=payment_id,
            address_id=payload.get("address_id"),
        ).model_dump()
        order["amount_captured"] = intent.amount
        order["currency"] = intent.currency
        order["created_at"] = order["updated_at"] = now()
        order["_id"] = db["order"].insert_one(order).inserted_id
    except DuplicateKeyError:
        # A concurrent submission with the same payment id won
        existing = db["order"].find_one({"payment_id": payment_id})
        return _public_many(db, [existing])[0], False
    except Exception as exc:
        logger.error("Order persistence failed after payment %s was captured for user %s: %r",
                     payment_id, user_id, exc)
        reconciliation_id = _record_reconciliation(db, user_id, payload, exc)
        raise OrderPersistenceError(
            "Payment was received but the order could not be saved. It has been queued for reconciliation.",
            payment_id=payment_id,
            reconciliation_id=reconciliation_id,
        ) from exc

    cache.invalidate(user_orders_tag(user_id), "orders")
    logger.info("Order %s created for user %s (payment %s, total %.2f)",
                order["_id"], user_id, payment_id, order["total_amount"])
    try:
        clear_cart(db, user_id, [(i["product_id"], i.get("size")) for i in items])
    except PyMongoError:
        logger.warning("Could not clear cart for user %s after order %s", user_id, order["_id"], exc_info=True)
    return _public_many(db, [order])[0], True


def list_user_orders(db: Database, cache: TaggedCache, user_id: str) -> List[Dict[str, Any]]:
    def load():
        orders = db["order"].find({"user_id": user_id}).sort("created_at", -1).limit(USER_ORDERS_LIMIT)
        return _public_many(db, list(orders))

    return cache.get_or_set(f"orders:user:{user_id}", CACHE_TTL_USER_ORDERS, [user_orders_tag(user_id)], load)


def list_all_orders(db: Database, cache: TaggedCache) -> List[Dict[str, Any]]:
    def load():
        orders = list(db["order"].find().sort("created_at", -1).limit(ADMIN_ORDERS_LIMIT))
        user_ids = list({to_object_id(o["user_id"]) for o in orders})
        users = {str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
                 for u in db["user"].find({"_id": {"$in": user_ids}})}
        public = _public_many(db, orders)
        for order in public:
            order["user"] = users.get(order["user_id"])
        return public

    return cache.get_or_set("orders:admin:all", CACHE_TTL_ADMIN_ORDERS, ["orders"], load)


def update_status(db: Database, cache: TaggedCache, order_id: str, status: str) -> Dict[str, Any]:
    oid = to_object_id(order_id, "order_id")
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise NotFound("Order not found")
    current = order["status"]
    if status not in TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(current, status)
    # Compare-and-set so two admins can't both move the order from the same state
    updated = db["order"].find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": {"status": status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        latest = db["order"].find_one({"_id": oid}) or order
        raise InvalidStatusTransition(latest["status"], status)
    cache.invalidate(user_orders_tag(order["user_id"]), "orders")
    logger.info("Order %s moved %s -> %s", order_id, current, status)
    return _public_many(db, [updated])[0]
