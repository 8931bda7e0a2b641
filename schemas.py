"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

OrderStatus = Literal["pending", "paid", "processing", "shipped", "delivered", "cancelled"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    is_admin: bool = Field(False, description="Grants access to /admin routes")
    avatar: Optional[str] = Field(None, description="Avatar image URL")
    default_address_id: Optional[str] = Field(None, description="The user's single default address")


class Address(BaseModel):
    user_id: str
    name: str = Field(..., max_length=255)
    email: Optional[EmailStr] = None
    mobile: str = Field(..., max_length=20)
    address_line1: str = Field(..., max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., max_length=100)
    state: str = Field(..., max_length=100)
    zip: str = Field(..., max_length=20)
    country: str = Field(..., max_length=100)


class Collection(BaseModel):
    name: str = Field(..., max_length=255)
    slug: str = Field(..., description="Unique URL-friendly identifier")
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, description="Cover image URL")


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0, description="Unit price")
    stock: int = Field(0, ge=0, description="Informational only, never decremented")
    collection_id: Optional[str] = None
    sizes: List[str] = Field(default_factory=list)
    image_url: Optional[str] = Field(None, description="Primary image URL")
    images: List[str] = Field(default_factory=list)


class Cart(BaseModel):
    """One row per (user_id, product_id, size)."""

    user_id: str
    product_id: str
    size: Optional[str] = None
    quantity: int = Field(1, ge=1)


class Wishlist(BaseModel):
    user_id: str
    product_id: str


class OrderItem(BaseModel):
    product_id: str
    name: Optional[str] = Field(None, description="Product name snapshot")
    size: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price charged, snapshotted at order time")


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "paid"
    payment_id: str = Field(..., description="Payment processor confirmation id")
    address_id: Optional[str] = None


class PaymentReconciliation(BaseModel):
    """Captured payments whose order could not be written."""

    user_id: str
    payment_id: str
    total_amount: float
    items: List[dict] = Field(default_factory=list)
    address_id: Optional[str] = None
    error: str
    resolved: bool = False
