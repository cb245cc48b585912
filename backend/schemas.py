"""
Database Schemas for the 3D-print Marketplace
Each Pydantic model represents a MongoDB collection (collection name = class name lowercased).
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

Size = Literal["small", "medium", "large"]
ProductType = Literal["custom", "catalogue"]
OrderStatus = Literal["pending", "processing", "completed", "cancelled"]

PRODUCT_TYPES = ("custom", "catalogue")
ORDER_STATUSES = ("pending", "processing", "completed", "cancelled")


# Catalog
class Category(BaseModel):
    categ_name: str = Field(..., min_length=1, description="Display name, unique")

    @field_validator("categ_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Category name is required")
        return v


class PricingOption(BaseModel):
    size: Size
    price: float = Field(ge=0, description="Unit price for this size")


class Product(BaseModel):
    product_name: str
    type: ProductType
    category: str = Field(..., description="Category id")
    # Snapshot of the category's display name, taken on create and on
    # category reassignment or explicit resync. Renaming the category does
    # not refresh it.
    categ_name: str
    pricing: List[PricingOption]
    color: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    description: str
    stl_file: Optional[str] = None
    gcode: Optional[str] = None

    @field_validator("pricing")
    @classmethod
    def check_pricing(cls, v: List[PricingOption]) -> List[PricingOption]:
        if not v:
            raise ValueError("Product must have at least one pricing option")
        sizes = [p.size for p in v]
        if len(set(sizes)) != len(sizes):
            raise ValueError("Duplicate size found in pricing options")
        return v


# Accounts
class Client(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password_hash: str
    phone_number: Optional[str] = None
    address: Optional[str] = None

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class Admin(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    password_hash: str

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return v.strip() if isinstance(v, str) else v


# Cart, one per client
class CartItem(BaseModel):
    product_id: str
    size: Size
    quantity: int = Field(default=1, ge=1)


class Cart(BaseModel):
    client_id: str
    items: List[CartItem] = Field(default_factory=list)
    revision: int = Field(default=0, description="Bumped on every write, used for compare-and-swap")


# Orders
class OrderItem(BaseModel):
    product_id: str
    size: Size
    quantity: int = Field(ge=1)
    price: float = Field(ge=0, description="Unit price at checkout time")


class Order(BaseModel):
    client_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    total_price: float = Field(ge=0)
    status: OrderStatus = Field(default="pending")
