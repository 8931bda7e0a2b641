import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import addresses
import cart
import catalog
import database
import orders
import wishlist
from auth import get_current_user, login_user, register_user, require_admin, update_profile
from cache import TaggedCache, get_cache
from config import PAYMENT_CURRENCY, SEED_DEMO_DATA, SERVICE_NAME
from database import get_db
from errors import InvalidRequest, ShopError
from logging_setup import setup_logging
from payments import PaymentGateway, get_payment_gateway, to_minor_units
from schemas import OrderStatus

logger = logging.getLogger(__name__)

app = FastAPI(title=SERVICE_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.on_event("startup")
def startup_event():
    setup_logging()
    if database.db is None:
        logger.warning("DATABASE_URL not set, data endpoints will answer 503")
        return
    database.ensure_indexes(database.db)
    if SEED_DEMO_DATA:
        catalog.seed_collections(database.db, get_cache())


# Routes
@app.get("/")
def read_root():
    return {"message": SERVICE_NAME}


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat(), "service": SERVICE_NAME}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
class RegisterInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None


@app.post("/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterInput, db: Database = Depends(get_db)):
    return register_user(db, payload.name, payload.email, payload.password)


@app.post("/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db)):
    return login_user(db, payload.email, payload.password)


@app.get("/user")
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@app.api_route("/profile", methods=["PUT", "POST"])
def profile(payload: ProfileUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user = update_profile(db, current_user["id"], payload.model_dump(exclude_unset=True))
    return {"message": "Profile updated successfully", "user": user}


# Catalog
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    collection_id: Optional[str] = None
    sizes: List[str] = []
    image_url: Optional[str] = None
    images: List[str] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    collection_id: Optional[str] = None
    sizes: Optional[List[str]] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None


class CollectionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    image_url: Optional[str] = None


class CollectionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    image_url: Optional[str] = None


@app.get("/products")
def list_products(db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return catalog.list_products(db, cache)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return catalog.get_product(db, cache, product_id)


@app.get("/collections")
def list_collections(db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return catalog.list_collections(db, cache)


@app.get("/collections/{collection_id}")
def get_collection(collection_id: str, db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return catalog.get_collection(db, cache, collection_id)


@app.post("/admin/products", status_code=201)
def create_product(data: ProductIn, _: dict = Depends(require_admin), db: Database = Depends(get_db),
                   cache: TaggedCache = Depends(get_cache)):
    return catalog.create_product(db, cache, data.model_dump())


@app.put("/admin/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, _: dict = Depends(require_admin),
                   db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return catalog.update_product(db, cache, product_id, data.model_dump(exclude_unset=True))


@app.delete("/admin/products/{product_id}", status_code=204)
def delete_product(product_id: str, _: dict = Depends(require_admin), db: Database = Depends(get_db),
                   cache: TaggedCache = Depends(get_cache)):
    catalog.delete_product(db, cache, product_id)
    return Response(status_code=204)


@app.post("/admin/collections", status_code=201)
def create_collection(data: CollectionIn, _: dict = Depends(require_admin), db: Database = Depends(get_db),
                      cache: TaggedCache = Depends(get_cache)):
    return catalog.create_collection(db, cache, data.model_dump())


@app.put("/admin/collections/{collection_id}")
def update_collection(collection_id: str, data: CollectionUpdate, _: dict = Depends(require_admin),
                      db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return catalog.update_collection(db, cache, collection_id, data.model_dump(exclude_unset=True))


@app.delete("/admin/collections/{collection_id}", status_code=204)
def delete_collection(collection_id: str, _: dict = Depends(require_admin), db: Database = Depends(get_db),
                      cache: TaggedCache = Depends(get_cache)):
    catalog.delete_collection(db, cache, collection_id)
    return Response(status_code=204)


# Addresses
class AddressIn(BaseModel):
    name: str = Field(..., max_length=255)
    email: Optional[EmailStr] = None
    mobile: str = Field(..., max_length=20)
    address_line1: str = Field(..., max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., max_length=100)
    state: str = Field(..., max_length=100)
    zip: str = Field(..., max_length=20)
    country: str = Field(..., max_length=100)
    is_default: bool = False


class AddressUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    mobile: Optional[str] = Field(None, max_length=20)
    address_line1: Optional[str] = Field(None, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    is_default: Optional[bool] = None


@app.get("/addresses")
def list_addresses(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return addresses.list_addresses(db, current_user["id"])


@app.post("/addresses", status_code=201)
def create_address(data: AddressIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return addresses.create_address(db, current_user["id"], data.model_dump())


@app.get("/addresses/{address_id}")
def get_address(address_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return addresses.get_address(db, current_user["id"], address_id)


@app.put("/addresses/{address_id}")
def update_address(address_id: str, data: AddressUpdate, current_user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return addresses.update_address(db, current_user["id"], address_id, data.model_dump(exclude_unset=True))


@app.delete("/addresses/{address_id}")
def delete_address(address_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    addresses.delete_address(db, current_user["id"], address_id)
    return {"message": "Address deleted"}


# Cart
class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None


class CartQuantity(BaseModel):
    quantity: int


class CartSyncIn(BaseModel):
    items: List[CartItemIn]


@app.get("/cart")
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.list_cart(db, current_user["id"])


@app.post("/cart")
def add_to_cart(item: CartItemIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.add_item(db, current_user["id"], item.product_id, item.size, item.quantity)


@app.post("/cart/sync")
def sync_cart(payload: CartSyncIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.sync_cart(db, current_user["id"], [i.model_dump() for i in payload.items])


@app.put("/cart/{item_id}")
def update_cart_item(item_id: str, payload: CartQuantity, current_user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    return cart.update_quantity(db, current_user["id"], item_id, payload.quantity)


@app.delete("/cart/{item_id}", status_code=204)
def remove_cart_item(item_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart.remove_item(db, current_user["id"], item_id)
    return Response(status_code=204)


@app.delete("/cart")
def clear_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"ok": True, "removed": cart.clear_cart(db, current_user["id"])}


# Wishlist
class WishlistToggleIn(BaseModel):
    product_id: str


@app.get("/wishlist")
def get_wishlist(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return wishlist.list_wishlist(db, current_user["id"])


@app.post("/wishlist/toggle")
def toggle_wishlist(payload: WishlistToggleIn, response: Response, current_user: dict = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    status, row = wishlist.toggle(db, current_user["id"], payload.product_id)
    if status == "added":
        response.status_code = 201
        return {"status": status, "data": row}
    return {"status": status}


@app.get("/wishlist/{product_id}")
def wishlist_membership(product_id: str, current_user: dict = Depends(get_current_user),
                        db: Database = Depends(get_db)):
    return {"product_id": product_id, "in_wishlist": wishlist.is_in_wishlist(db, current_user["id"], product_id)}


# Checkout & orders
class CheckoutIn(BaseModel):
    amount: float = Field(..., gt=0)
    idempotency_key: Optional[str] = None


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    size: Optional[str] = None


class OrderIn(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    payment_id: str = Field(..., min_length=1)
    address_id: Optional[str] = None


class StatusIn(BaseModel):
    status: OrderStatus


@app.post("/checkout")
def checkout(payload: CheckoutIn, current_user: dict = Depends(get_current_user),
             gateway: PaymentGateway = Depends(get_payment_gateway)):
    amount = to_minor_units(payload.amount)
    if amount < 1:
        raise InvalidRequest("Amount too small", fields={"amount": "must be at least 0.01"})
    intent = gateway.create_intent(amount, PAYMENT_CURRENCY, idempotency_key=payload.idempotency_key)
    logger.info("Payment intent %s requested by user %s for %d", intent.id, current_user["id"], amount)
    return {
        "clientSecret": intent.client_secret,
        "paymentIntentId": intent.id,
        "amount": intent.amount,
        "currency": intent.currency,
    }


@app.post("/orders")
def create_order(payload: OrderIn, response: Response, current_user: dict = Depends(get_current_user),
                 db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache),
                 gateway: PaymentGateway = Depends(get_payment_gateway)):
    order, created = orders.create_order(db, cache, gateway, current_user["id"], payload.model_dump())
    response.status_code = 201 if created else 200
    return order


@app.get("/orders")
def list_orders(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db),
                cache: TaggedCache = Depends(get_cache)):
    return orders.list_user_orders(db, cache, current_user["id"])


@app.get("/admin/orders")
def admin_orders(_: dict = Depends(require_admin), db: Database = Depends(get_db),
                 cache: TaggedCache = Depends(get_cache)):
    return orders.list_all_orders(db, cache)


@app.patch("/admin/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusIn, _: dict = Depends(require_admin),
                        db: Database = Depends(get_db), cache: TaggedCache = Depends(get_cache)):
    return orders.update_status(db, cache, order_id, payload.status)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
